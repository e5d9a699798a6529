"""Poll service: creation, voting with revote semantics, closing and role-shaped reads."""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain import polls
from app.errors import FeatureDisabled, NotEnrolled, PermissionDenied, PollNotFound, ValidationFailed
from app.models.notification import NotificationType
from app.models.poll import Poll, ShowResults
from app.models.user import User
from app.realtime.hub import Broadcaster, NullBroadcaster
from app.services import monitoring_service, notification_service, session_service
from app.services.access import can_manage, ensure_manager, ensure_participant, is_student, load_session
from app.services.concurrency import retry_on_conflict
from app.utils import room_key, utcnow

logger = logging.getLogger(__name__)

SHOW_RESULTS = {s.value for s in ShowResults}


async def load_poll(db: AsyncSession, poll_id: int) -> Poll:
    result = await db.execute(
        select(Poll).where(Poll.id == poll_id).execution_options(populate_existing=True)
    )
    poll = result.scalar_one_or_none()
    if poll is None:
        raise PollNotFound()
    return poll


def view_for(poll: Poll, actor: User, can_manage_session: bool) -> Dict[str, Any]:
    if can_manage_session:
        return polls.manager_view(poll)
    return polls.student_view(poll, actor.id)


async def create_poll(
    db: AsyncSession,
    actor: User,
    session_id: int,
    question: str,
    type: str,
    options: Optional[List[Any]] = None,
    allow_change_vote: bool = False,
    show_results: str = ShowResults.AFTER_VOTE.value,
    require_login: bool = True,
    time_limit: Optional[int] = None,
    max_responses: Optional[int] = None,
    is_anonymous: bool = False,
    expires_in: Optional[int] = None,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Poll:
    """Create an active poll in a session owned by ``actor``."""
    question = (question or "").strip()
    if not question:
        raise ValidationFailed(fields={"question": "must not be empty"})
    if show_results not in SHOW_RESULTS:
        raise ValidationFailed(fields={"show_results": f"must be one of {sorted(SHOW_RESULTS)}"})
    if expires_in is not None and expires_in <= 0:
        raise ValidationFailed(fields={"expires_in": "must be a positive number of minutes"})
    texts = polls.normalize_options(type, options)

    async def _apply():
        session = await load_session(db, session_id)
        ensure_manager(session, actor, "Only the session owner can create polls")
        if not session.enable_polls:
            raise FeatureDisabled("Polls are disabled for this session")
        now = utcnow()
        poll = Poll(
            session_id=session_id,
            created_by=actor.id,
            question=question,
            type=type,
            options=texts,
            allow_change_vote=allow_change_vote,
            show_results=show_results,
            require_login=require_login,
            time_limit=time_limit,
            max_responses=max_responses,
            is_active=True,
            is_anonymous=is_anonymous,
            expires_at=now + timedelta(minutes=expires_in) if expires_in else None,
            total_votes=0,
            total_text_responses=0,
            average_response_time=0,
            responses=[],
            created_at=now,
            updated_at=now,
        )
        db.add(poll)
        await session_service.count_poll(db, session_id)
        return poll, [entry.student_id for entry in session.roster]

    poll, student_ids = await retry_on_conflict(db, _apply, label="poll creation")
    logger.info("Poll %s created in session %s by %s", poll.id, session_id, actor.id)

    notification_service.notify_many(
        db,
        student_ids,
        NotificationType.POLL_CREATED.value,
        "New poll",
        poll.question,
        sender_id=actor.id,
        data={"session_id": session_id, "poll_id": poll.id},
    )
    await broadcaster.publish(
        room_key(session_id),
        "new_poll",
        {
            "poll_id": poll.id,
            "question": poll.question,
            "type": poll.type,
            "options": list(poll.options),
            "expires_at": poll.expires_at,
            "settings": poll.settings,
        },
    )
    return poll


async def vote(
    db: AsyncSession,
    actor: User,
    poll_id: int,
    option_index: Optional[int] = None,
    text: Optional[str] = None,
    response_time: Optional[float] = None,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Dict[str, Any]:
    """Cast, or change, the actor's vote or text answer.

    Returns ``{"poll_id", "revote", "results"}``; ``results`` is only filled in
    when the poll shows results after voting or in real time.
    """

    async def _apply():
        poll = await load_poll(db, poll_id)
        session = await load_session(db, poll.session_id)
        if is_student(actor) and session.roster_entry(actor.id) is None:
            raise NotEnrolled()
        if not is_student(actor) and not can_manage(session, actor):
            raise PermissionDenied()
        revote = polls.find_response(poll, actor.id) is not None
        polls.apply_vote(
            poll,
            actor.id,
            utcnow(),
            option_index=option_index,
            text=text,
            response_time=response_time,
        )
        return poll, revote

    poll, revote = await retry_on_conflict(db, _apply, label="poll vote")
    logger.info("Vote recorded on poll %s by %s (revote=%s)", poll_id, actor.id, revote)

    if is_student(actor) and not revote:
        await monitoring_service.bump_engagement(db, poll.session_id, actor.id, "poll")

    aggregate = polls.aggregate(poll)
    await broadcaster.publish(room_key(poll.session_id), "poll_updated", aggregate)

    show_now = poll.show_results in (ShowResults.AFTER_VOTE.value, ShowResults.REAL_TIME.value)
    return {
        "poll_id": poll.id,
        "revote": revote,
        "results": aggregate if show_now else None,
    }


async def close_poll(
    db: AsyncSession,
    actor: User,
    poll_id: int,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Poll:

    async def _apply():
        poll = await load_poll(db, poll_id)
        session = await load_session(db, poll.session_id)
        ensure_manager(session, actor, "Only the session owner can close polls")
        polls.close(poll, utcnow())
        return poll, [entry.student_id for entry in session.roster]

    poll, student_ids = await retry_on_conflict(db, _apply, label="poll close")
    logger.info("Poll %s closed by %s", poll_id, actor.id)

    notification_service.notify_many(
        db,
        student_ids,
        NotificationType.POLL_CLOSED.value,
        "Poll closed",
        poll.question,
        sender_id=actor.id,
        data={"session_id": poll.session_id, "poll_id": poll.id},
    )
    await broadcaster.publish(
        room_key(poll.session_id),
        "poll_closed",
        {"poll_id": poll.id, "closed_at": poll.closed_at, "results": polls.aggregate(poll)},
    )
    return poll


async def _expire(db: AsyncSession, poll: Poll) -> Poll:
    """Persist the implicit close of an expired poll seen at read time."""
    if not (poll.is_active and polls.is_expired(poll, utcnow())):
        return poll

    async def _apply():
        fresh = await load_poll(db, poll.id)
        polls.expire_if_due(fresh, utcnow())
        return fresh

    fresh = await retry_on_conflict(db, _apply, label="poll expiry")
    logger.info("Poll %s expired", fresh.id)
    return fresh


async def get_poll(db: AsyncSession, actor: User, poll_id: int) -> Dict[str, Any]:
    poll = await load_poll(db, poll_id)
    session = await load_session(db, poll.session_id)
    ensure_participant(session, actor)
    poll = await _expire(db, poll)
    return view_for(poll, actor, can_manage(session, actor))


async def list_polls(
    db: AsyncSession,
    actor: User,
    session_id: int,
    active: Optional[bool] = None,
    page: int = 1,
    per_page: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    session = await load_session(db, session_id)
    ensure_participant(session, actor)

    filters = [Poll.session_id == session_id]
    if active is not None:
        filters.append(Poll.is_active == active)

    total = (await db.execute(select(func.count(Poll.id)).where(and_(*filters)))).scalar() or 0
    result = await db.execute(
        select(Poll)
        .where(and_(*filters))
        .order_by(Poll.created_at.desc(), Poll.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    manager = can_manage(session, actor)
    views = []
    for poll in result.scalars().all():
        poll = await _expire(db, poll)
        views.append(view_for(poll, actor, manager))
    return views, total


async def delete_poll(db: AsyncSession, actor: User, poll_id: int) -> None:
    poll = await load_poll(db, poll_id)
    session = await load_session(db, poll.session_id)
    ensure_manager(session, actor, "Only the session owner can delete polls")
    await db.delete(poll)
    await db.flush()
    logger.info("Poll %s deleted by %s", poll_id, actor.id)
