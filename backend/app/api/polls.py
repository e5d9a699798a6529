"""
Poll API routes.

Routes:
    POST   /api/v1/polls/sessions/{session_id}  — Create poll in a session
    GET    /api/v1/polls/sessions/{session_id}  — List polls of a session
    GET    /api/v1/polls/{poll_id}              — Get poll (role-shaped view)
    POST   /api/v1/polls/{poll_id}/vote         — Vote or answer
    POST   /api/v1/polls/{poll_id}/close        — Close poll
    DELETE /api/v1/polls/{poll_id}              — Delete poll
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.domain import polls
from app.models.user import User
from app.realtime.hub import Broadcaster
from app.schemas.poll import (
    PollCreate,
    VoteRequest,
    VoteResponse,
    PollListResponse,
    PollClosedResponse,
)
from app.services import poll_service
from app.middleware.rbac import get_current_user, get_broadcaster, require_admin_or_faculty

router = APIRouter(prefix="/api/v1/polls", tags=["Polls"])


# ─── Session polls ────────────────────────────────────────────────────────────

@router.post("/sessions/{session_id}", status_code=status.HTTP_201_CREATED)
async def create_poll(
    session_id: int,
    body: PollCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> Dict[str, Any]:
    poll = await poll_service.create_poll(
        db,
        current_user,
        session_id,
        question=body.question,
        type=body.type,
        options=body.options,
        allow_change_vote=body.allow_change_vote,
        show_results=body.show_results,
        require_login=body.require_login,
        time_limit=body.time_limit,
        max_responses=body.max_responses,
        is_anonymous=body.is_anonymous,
        expires_in=body.expires_in,
        broadcaster=broadcaster,
    )
    return polls.manager_view(poll)


@router.get("/sessions/{session_id}", response_model=PollListResponse)
async def list_session_polls(
    session_id: int,
    active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    views, total = await poll_service.list_polls(
        db, current_user, session_id, active=active, page=page, per_page=per_page
    )
    return PollListResponse(polls=views, total=total, page=page, per_page=per_page)


# ─── Single poll ──────────────────────────────────────────────────────────────

@router.get("/{poll_id}")
async def get_poll(
    poll_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return await poll_service.get_poll(db, current_user, poll_id)


@router.post("/{poll_id}/vote", response_model=VoteResponse)
async def vote(
    poll_id: int,
    body: VoteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    result = await poll_service.vote(
        db,
        current_user,
        poll_id,
        option_index=body.option_index,
        text=body.text,
        response_time=body.response_time,
        broadcaster=broadcaster,
    )
    return VoteResponse(**result)


@router.post("/{poll_id}/close", response_model=PollClosedResponse)
async def close_poll(
    poll_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    poll = await poll_service.close_poll(db, current_user, poll_id, broadcaster=broadcaster)
    return PollClosedResponse(
        id=poll.id,
        is_active=poll.is_active,
        closed_at=poll.closed_at,
        results=polls.aggregate(poll),
    )


@router.delete("/{poll_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_poll(
    poll_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    await poll_service.delete_poll(db, current_user, poll_id)
