"""Session service: creation, lifecycle transitions, roster and presence."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.domain import monitoring, session_state
from app.errors import (
    InvalidState,
    PermissionDenied,
    UserNotFound,
    ValidationFailed,
    WrongCollege,
)
from app.models.notification import NotificationType
from app.models.session import ClassSession, RosterEntry, SessionStatus, SETTING_FIELDS
from app.models.user import User, UserRole
from app.realtime.hub import Broadcaster, NullBroadcaster
from app.services import monitoring_service, notification_service
from app.services.access import (
    can_manage,
    ensure_manager,
    ensure_participant,
    is_admin,
    load_session,
)
from app.services.concurrency import retry_on_conflict
from app.services.user_service import get_students_in_college, get_user_by_id
from app.utils import room_key, utcnow

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "subject", "description", "scheduled_start", "scheduled_end", "duration_minutes")

NOTIFY_ON = {
    "start": (NotificationType.SESSION_START, "Session started", "{title} is now live"),
    "end": (NotificationType.SESSION_END, "Session ended", "{title} has ended"),
}


def _default_settings() -> Dict[str, Any]:
    return {
        "allow_late_join": True,
        "late_join_cutoff_minutes": settings.DEFAULT_LATE_JOIN_CUTOFF_MINUTES,
        "require_location_verification": True,
        "enable_chat": True,
        "enable_polls": True,
        "enable_screen_share": True,
        "enable_recording": False,
        "max_concurrent_students": settings.DEFAULT_MAX_CONCURRENT_STUDENTS,
    }


def _apply_settings(session: ClassSession, values: Optional[Dict[str, Any]]) -> None:
    for key, value in (values or {}).items():
        if key in SETTING_FIELDS and value is not None:
            setattr(session, key, value)


async def _resolve_owner(db: AsyncSession, actor: User, faculty_id: Optional[int]) -> User:
    if actor.role == UserRole.FACULTY:
        if faculty_id is not None and faculty_id != actor.id:
            raise PermissionDenied("Faculty can only create sessions for themselves")
        return actor
    if not is_admin(actor):
        raise PermissionDenied("Only faculty or admins can create sessions")
    if faculty_id is None:
        raise ValidationFailed(fields={"faculty_id": "is required when an admin creates a session"})
    faculty = await get_user_by_id(db, faculty_id)
    if faculty is None or faculty.role != UserRole.FACULTY:
        raise UserNotFound("Faculty member not found")
    if actor.college_id is not None and faculty.college_id != actor.college_id:
        raise WrongCollege("Faculty member belongs to another college")
    return faculty


async def _check_students(db: AsyncSession, session: ClassSession, student_ids: List[int]) -> List[int]:
    unique_ids = list(dict.fromkeys(student_ids))
    students = await get_students_in_college(db, unique_ids, session.college_id)
    if len(students) != len(unique_ids):
        raise WrongCollege()
    return unique_ids


# ─── CRUD ─────────────────────────────────────────────────────────────────────

async def create_session(
    db: AsyncSession,
    actor: User,
    title: str,
    subject: str,
    scheduled_start: datetime,
    duration_minutes: int = 60,
    scheduled_end: Optional[datetime] = None,
    description: Optional[str] = None,
    faculty_id: Optional[int] = None,
    session_settings: Optional[Dict[str, Any]] = None,
    student_ids: Optional[List[int]] = None,
) -> ClassSession:
    """Create a scheduled session owned by a faculty member."""
    owner = await _resolve_owner(db, actor, faculty_id)
    session_state.validate_schedule(scheduled_start, scheduled_end, duration_minutes)

    now = utcnow()
    session = ClassSession(
        title=title,
        subject=subject,
        description=description,
        faculty_id=owner.id,
        college_id=owner.college_id,
        scheduled_start=scheduled_start,
        scheduled_end=scheduled_end,
        duration_minutes=duration_minutes,
        status=SessionStatus.SCHEDULED.value,
        is_active=False,
        total_enrolled=0,
        total_joined=0,
        max_concurrent_seen=0,
        attendance_rate=0,
        total_polls=0,
        created_at=now,
    )
    _apply_settings(session, _default_settings())
    _apply_settings(session, session_settings)

    if student_ids:
        ids = await _check_students(db, session, student_ids)
        session_state.enroll(session, ids, now)

    session_state.recompute_analytics(session, now)
    db.add(session)
    await db.flush()
    logger.info("Session %s created by %s for faculty %s", session.id, actor.id, owner.id)
    return session


async def list_sessions(
    db: AsyncSession,
    actor: User,
    status: Optional[str] = None,
    page: int = 1,
    per_page: int = 50,
) -> Tuple[List[ClassSession], int]:
    """Sessions visible to ``actor``: the college for admins, own for faculty, enrolled for students."""
    query = select(ClassSession)
    count_query = select(func.count(ClassSession.id))

    filters = []
    if is_admin(actor):
        if actor.college_id is not None:
            filters.append(ClassSession.college_id == actor.college_id)
    elif actor.role == UserRole.FACULTY:
        filters.append(ClassSession.faculty_id == actor.id)
    else:
        enrolled = select(RosterEntry.session_id).where(RosterEntry.student_id == actor.id)
        filters.append(ClassSession.id.in_(enrolled))
    if status:
        filters.append(ClassSession.status == status)

    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total = (await db.execute(count_query)).scalar() or 0
    query = (
        query.order_by(ClassSession.scheduled_start.desc(), ClassSession.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    result = await db.execute(query)
    return list(result.unique().scalars().all()), total


async def get_session(db: AsyncSession, actor: User, session_id: int) -> ClassSession:
    session = await load_session(db, session_id)
    ensure_participant(session, actor)
    return session


async def update_session(
    db: AsyncSession,
    actor: User,
    session_id: int,
    changes: Dict[str, Any],
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ClassSession:
    """Edit details, schedule or settings of a session that is not live."""

    async def _apply():
        session = await load_session(db, session_id)
        ensure_manager(session, actor)
        if session.status == SessionStatus.LIVE.value:
            raise InvalidState("Cannot update a live session")

        fields = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
        session_state.validate_schedule(
            fields.get("scheduled_start", session.scheduled_start),
            fields.get("scheduled_end", session.scheduled_end),
            fields.get("duration_minutes", session.duration_minutes),
        )
        for key, value in fields.items():
            setattr(session, key, value)
        _apply_settings(session, changes.get("settings"))
        session_state.recompute_analytics(session, utcnow())
        return session

    session = await retry_on_conflict(db, _apply, label="session update")
    logger.info("Session %s updated by %s", session_id, actor.id)
    await broadcaster.publish(
        room_key(session_id),
        "session_updated",
        {"session_id": session_id, "settings": session.settings},
    )
    return session


async def delete_session(
    db: AsyncSession,
    actor: User,
    session_id: int,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ClassSession:
    """Sessions are never hard-deleted; deleting one cancels it."""
    return await transition(db, actor, session_id, "cancel", broadcaster=broadcaster)


# ─── Lifecycle ────────────────────────────────────────────────────────────────

async def transition(
    db: AsyncSession,
    actor: User,
    session_id: int,
    action: str,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ClassSession:
    """Apply a lifecycle action (start, pause, resume, end, cancel)."""
    apply_action = session_state.TRANSITIONS.get(action)
    if apply_action is None:
        raise ValidationFailed(fields={"action": f"Unknown action '{action}'"})

    async def _apply():
        session = await load_session(db, session_id)
        ensure_manager(session, actor)
        now = utcnow()
        checked_out = apply_action(session, now)
        await monitoring_service.check_out(db, session_id, checked_out, now)
        session_state.recompute_analytics(session, now)
        return session, checked_out, now

    session, checked_out, now = await retry_on_conflict(db, _apply, label=f"session {action}")
    logger.info(
        "Session %s: %s by %s (status=%s, checked out %d)",
        session_id, action, actor.id, session.status, len(checked_out),
    )

    if action in NOTIFY_ON:
        kind, title, message = NOTIFY_ON[action]
        notification_service.notify_many(
            db,
            [entry.student_id for entry in session.roster],
            kind.value,
            title,
            message.format(title=session.title),
            sender_id=actor.id,
            data={"session_id": session_id},
        )

    await broadcaster.publish(
        room_key(session_id),
        f"session_{action}",
        {"session_id": session_id, "new_status": session.status, "timestamp": now},
    )
    return session


async def start_session(db: AsyncSession, actor: User, session_id: int, **kwargs) -> ClassSession:
    return await transition(db, actor, session_id, "start", **kwargs)


async def end_session(db: AsyncSession, actor: User, session_id: int, **kwargs) -> ClassSession:
    return await transition(db, actor, session_id, "end", **kwargs)


# ─── Roster ───────────────────────────────────────────────────────────────────

async def enroll_students(
    db: AsyncSession,
    actor: User,
    session_id: int,
    student_ids: List[int],
) -> Dict[str, int]:
    """Enroll students of the session's college. Already-enrolled students are skipped."""
    session = await load_session(db, session_id)
    ensure_manager(session, actor)
    ids = await _check_students(db, session, student_ids)

    async def _apply():
        fresh = await load_session(db, session_id)
        now = utcnow()
        counts = session_state.enroll(fresh, ids, now)
        session_state.recompute_analytics(fresh, now)
        return fresh, counts

    session, (enrolled, already) = await retry_on_conflict(db, _apply, label="enrollment")
    logger.info("Session %s: enrolled %d, already enrolled %d", session_id, enrolled, already)
    return {
        "enrolled": enrolled,
        "already_enrolled": already,
        "total_enrolled": session.total_enrolled,
    }


async def list_roster(db: AsyncSession, actor: User, session_id: int) -> List[Dict[str, Any]]:
    session = await load_session(db, session_id)
    ensure_manager(session, actor)
    ids = [entry.student_id for entry in session.roster]
    users = {}
    if ids:
        result = await db.execute(select(User).where(User.id.in_(ids)))
        users = {u.id: u for u in result.scalars().all()}
    roster = []
    for entry in sorted(session.roster, key=lambda e: e.id or 0):
        user = users.get(entry.student_id)
        roster.append(
            {
                "student_id": entry.student_id,
                "name": user.full_name if user else None,
                "email": user.email if user else None,
                "enrolled_at": entry.enrolled_at,
                "joined_at": entry.joined_at,
                "left_at": entry.left_at,
                "is_present": entry.is_present,
                "last_activity": entry.last_activity,
                "participation_score": entry.participation_score,
            }
        )
    return roster


async def join_session(
    db: AsyncSession,
    actor: User,
    session_id: int,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Dict[str, Any]:
    """Mark the actor present in a live session and open their attendance."""

    async def _apply():
        session = await load_session(db, session_id)
        now = utcnow()
        entry = session_state.join(session, actor.id, now, bypass_enrollment=can_manage(session, actor))
        if entry is None:
            return session, None, now
        attendance = await monitoring_service.ensure_attendance(db, session_id, actor.id)
        monitoring.mark_joined(attendance, now)
        monitoring.recompute(attendance, now)
        session_state.recompute_analytics(session, now)
        return session, entry, now

    session, entry, now = await retry_on_conflict(db, _apply, label="join")
    present = session_state.present_count(session)
    if entry is None:
        logger.info("User %s observing session %s", actor.id, session_id)
    else:
        logger.info("Student %s joined session %s (%d present)", actor.id, session_id, present)
        await broadcaster.publish(
            room_key(session_id),
            "student_joined",
            {"session_id": session_id, "student_id": actor.id, "present_count": present, "timestamp": now},
        )
    return {
        "session_id": session_id,
        "user_id": actor.id,
        "observer": entry is None,
        "joined_at": entry.joined_at if entry is not None else now,
        "is_present": entry.is_present if entry is not None else True,
        "present_count": present,
    }


async def leave_session(
    db: AsyncSession,
    actor: User,
    session_id: int,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Dict[str, Any]:

    async def _apply():
        session = await load_session(db, session_id)
        now = utcnow()
        entry = session_state.leave(session, actor.id, now)
        await monitoring_service.check_out(db, session_id, [actor.id], now)
        session_state.recompute_analytics(session, now)
        return session, entry, now

    session, entry, now = await retry_on_conflict(db, _apply, label="leave")
    present = session_state.present_count(session)
    logger.info("Student %s left session %s (%d present)", actor.id, session_id, present)
    await broadcaster.publish(
        room_key(session_id),
        "student_left",
        {"session_id": session_id, "student_id": actor.id, "present_count": present, "timestamp": now},
    )
    return {
        "session_id": session_id,
        "user_id": actor.id,
        "left_at": entry.left_at,
        "is_present": entry.is_present,
        "present_count": present,
    }


async def count_poll(db: AsyncSession, session_id: int) -> None:
    """Increment the session's poll counter. Part of the caller's write."""
    session = await load_session(db, session_id)
    session.total_polls = (session.total_polls or 0) + 1
    session_state.recompute_analytics(session, utcnow())
