"""Session loading and relationship-based access checks shared by the services.

Authorization is re-evaluated on every call from the principal's role and its
relationship to the session (owner, same college, enrolled).
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotEnrolled, PermissionDenied, SessionNotFound
from app.models.session import ClassSession
from app.models.user import User, UserRole


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def is_student(user: User) -> bool:
    return user.role == UserRole.STUDENT


async def load_session(db: AsyncSession, session_id: int) -> ClassSession:
    """Load a session with fresh state, replacing whatever the identity map holds."""
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise SessionNotFound()
    return session


def _admin_of(session: ClassSession, user: User) -> bool:
    return is_admin(user) and (user.college_id is None or user.college_id == session.college_id)


def is_owner(session: ClassSession, user: User) -> bool:
    return user.role == UserRole.FACULTY and session.faculty_id == user.id


def can_manage(session: ClassSession, user: User) -> bool:
    return is_owner(session, user) or _admin_of(session, user)


def ensure_manager(session: ClassSession, user: User, message: Optional[str] = None) -> None:
    if not can_manage(session, user):
        raise PermissionDenied(message or "Only the session owner can perform this action")


def is_enrolled(session: ClassSession, user: User) -> bool:
    return session.roster_entry(user.id) is not None


def ensure_participant(session: ClassSession, user: User) -> None:
    """Owner, admin of the college, or an enrolled student."""
    if can_manage(session, user):
        return
    if is_student(user):
        if not is_enrolled(session, user):
            raise NotEnrolled()
        return
    raise PermissionDenied()
