"""
Notification API routes.

Routes:
    GET    /api/v1/notifications                         — Own notifications
    POST   /api/v1/notifications/read-all                — Mark all as read
    POST   /api/v1/notifications/{notification_id}/read  — Mark one as read
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.schemas.notification import NotificationResponse, NotificationListResponse
from app.services.notification_service import list_notifications, mark_all_read, mark_read
from app.middleware.rbac import get_current_user

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    items, total, unread = await list_notifications(
        db, current_user.id, unread_only=unread_only, page=page, per_page=per_page
    )
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in items],
        total=total,
        unread=unread,
        page=page,
        per_page=per_page,
    )


@router.post("/read-all")
async def read_all(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"updated": await mark_all_read(db, current_user.id)}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def read_one(
    notification_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return NotificationResponse.model_validate(await mark_read(db, notification_id, current_user.id))
