"""
Session management API routes.

Routes:
    GET    /api/v1/sessions                        — List visible sessions
    POST   /api/v1/sessions                        — Create session
    GET    /api/v1/sessions/{session_id}           — Get session
    PATCH  /api/v1/sessions/{session_id}           — Update details, schedule or settings
    DELETE /api/v1/sessions/{session_id}           — Cancel session
    POST   /api/v1/sessions/{session_id}/{action}  — start | pause | resume | end | cancel
    POST   /api/v1/sessions/{session_id}/enroll    — Enroll students
    GET    /api/v1/sessions/{session_id}/roster    — Roster with presence
    POST   /api/v1/sessions/{session_id}/join      — Join a live session
    POST   /api/v1/sessions/{session_id}/leave     — Leave a session
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.realtime.hub import Broadcaster
from app.schemas.session import (
    SessionCreate,
    SessionUpdate,
    SessionResponse,
    SessionListResponse,
    EnrollRequest,
    EnrollResponse,
    RosterEntryResponse,
    JoinResponse,
    LeaveResponse,
)
from app.services.session_service import (
    create_session,
    list_sessions,
    get_session,
    update_session,
    delete_session,
    transition,
    enroll_students,
    list_roster,
    join_session,
    leave_session,
)
from app.middleware.rbac import get_current_user, get_broadcaster, require_admin_or_faculty

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


# ─── Collection endpoints ─────────────────────────────────────────────────────

@router.get("", response_model=SessionListResponse)
async def get_sessions(
    status_filter: Optional[str] = Query(
        None, alias="status", pattern="^(scheduled|live|paused|ended|cancelled)$"
    ),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    sessions, total = await list_sessions(
        db,
        current_user,
        status=status_filter,
        page=page,
        per_page=per_page,
    )
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_new_session(
    body: SessionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    session = await create_session(
        db,
        current_user,
        title=body.title,
        subject=body.subject,
        scheduled_start=body.scheduled_start,
        duration_minutes=body.duration_minutes,
        scheduled_end=body.scheduled_end,
        description=body.description,
        faculty_id=body.faculty_id,
        session_settings=body.settings.model_dump(exclude_none=True) if body.settings else None,
        student_ids=body.student_ids,
    )
    return SessionResponse.model_validate(session)


# ─── Single session ───────────────────────────────────────────────────────────

@router.get("/{session_id}", response_model=SessionResponse)
async def get_single_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return SessionResponse.model_validate(await get_session(db, current_user, session_id))


@router.patch("/{session_id}", response_model=SessionResponse)
async def patch_session(
    session_id: int,
    body: SessionUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    changes = body.model_dump(exclude_unset=True, exclude={"settings"})
    if body.settings is not None:
        changes["settings"] = body.settings.model_dump(exclude_none=True)
    session = await update_session(db, current_user, session_id, changes, broadcaster=broadcaster)
    return SessionResponse.model_validate(session)


@router.delete("/{session_id}", response_model=SessionResponse)
async def cancel_session(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    session = await delete_session(db, current_user, session_id, broadcaster=broadcaster)
    return SessionResponse.model_validate(session)


# ─── Roster & presence ────────────────────────────────────────────────────────

@router.post("/{session_id}/enroll", response_model=EnrollResponse)
async def enroll(
    session_id: int,
    body: EnrollRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    return EnrollResponse(**await enroll_students(db, current_user, session_id, body.student_ids))


@router.get("/{session_id}/roster", response_model=List[RosterEntryResponse])
async def roster(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    return [RosterEntryResponse(**entry) for entry in await list_roster(db, current_user, session_id)]


@router.post("/{session_id}/join", response_model=JoinResponse)
async def join(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return JoinResponse(**await join_session(db, current_user, session_id, broadcaster=broadcaster))


@router.post("/{session_id}/leave", response_model=LeaveResponse)
async def leave(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    return LeaveResponse(**await leave_session(db, current_user, session_id, broadcaster=broadcaster))


# ─── Lifecycle ────────────────────────────────────────────────────────────────
# Registered last so the fixed sub-paths above take precedence.

@router.post("/{session_id}/{action}", response_model=SessionResponse)
async def session_action(
    session_id: int,
    action: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    """Lifecycle control. Unknown actions are rejected by the service."""
    session = await transition(db, current_user, session_id, action, broadcaster=broadcaster)
    return SessionResponse.model_validate(session)
