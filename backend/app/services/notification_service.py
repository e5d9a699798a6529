"""In-app notifications produced by session, poll and monitoring events."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFound
from app.models.notification import Notification
from app.utils import utcnow

logger = logging.getLogger(__name__)


def notify_many(
    db: AsyncSession,
    recipient_ids: Iterable[int],
    type: str,
    title: str,
    message: str,
    sender_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
) -> int:
    """Stage one notification per recipient. Flushed with the caller's transaction."""
    count = 0
    for recipient_id in set(recipient_ids):
        db.add(
            Notification(
                recipient_id=recipient_id,
                sender_id=sender_id,
                type=type,
                title=title,
                message=message,
                data=data,
                is_read=False,
                created_at=utcnow(),
            )
        )
        count += 1
    if count:
        logger.info("Queued %d '%s' notifications", count, type)
    return count


async def list_notifications(
    db: AsyncSession,
    recipient_id: int,
    unread_only: bool = False,
    page: int = 1,
    per_page: int = 50,
) -> Tuple[List[Notification], int, int]:
    """Returns (notifications, total, unread_count)."""
    filters = [Notification.recipient_id == recipient_id]
    if unread_only:
        filters.append(Notification.is_read == False)  # noqa: E712

    total = (await db.execute(select(func.count(Notification.id)).where(and_(*filters)))).scalar() or 0
    unread = (
        await db.execute(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == recipient_id,
                Notification.is_read == False,  # noqa: E712
            )
        )
    ).scalar() or 0

    result = await db.execute(
        select(Notification)
        .where(and_(*filters))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total, unread


async def mark_read(db: AsyncSession, notification_id: int, recipient_id: int) -> Notification:
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.recipient_id == recipient_id,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFound("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        await db.flush()
    return notification


async def mark_all_read(db: AsyncSession, recipient_id: int) -> int:
    result = await db.execute(
        update(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
