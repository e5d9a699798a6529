"""
User management API routes.

Routes:
    GET    /api/v1/users                   — List users (filtered, paginated)
    POST   /api/v1/users                   — Create user
    GET    /api/v1/users/me                — Current user
    GET    /api/v1/users/{user_id}         — Get user by ID
    DELETE /api/v1/users/{user_id}         — Deactivate user
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import PermissionDenied
from app.models.user import User, UserRole
from app.schemas.user import UserCreate, UserResponse, UserListResponse
from app.services.user_service import create_user, deactivate_user, get_user, get_users
from app.middleware.rbac import get_current_user, require_admin, require_admin_or_faculty

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.get("", response_model=UserListResponse)
async def list_users(
    role: Optional[str] = Query(None, pattern="^(ADMIN|FACULTY|STUDENT)$", description="Filter by role"),
    search: Optional[str] = Query(None, description="Search by name, username or email"),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    """List users of the caller's college."""
    users, total = await get_users(
        db,
        college_id=current_user.college_id,
        role=role,
        search=search,
        page=page,
        per_page=per_page,
    )
    return UserListResponse(
        users=[UserResponse.model_validate(u) for u in users],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_new_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    """Create a user. College admins can only create users in their own college."""
    college_id = data.college_id
    if current_user.college_id is not None:
        if college_id is not None and college_id != current_user.college_id:
            raise PermissionDenied("Cannot create users in another college")
        college_id = current_user.college_id

    user = await create_user(
        db,
        username=data.username,
        email=data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        role=data.role,
        college_id=college_id,
        student_id=data.student_id,
        department=data.department,
    )
    return UserResponse.model_validate(user)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_single_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role == UserRole.STUDENT and current_user.id != user_id:
        raise PermissionDenied()
    user = await get_user(db, user_id)
    if current_user.college_id is not None and user.college_id != current_user.college_id:
        raise PermissionDenied()
    return UserResponse.model_validate(user)


@router.delete("/{user_id}", response_model=UserResponse)
async def deactivate(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    user = await deactivate_user(db, user_id)
    return UserResponse.model_validate(user)
