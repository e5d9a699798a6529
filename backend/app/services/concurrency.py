"""Optimistic concurrency helpers.

Aggregate roots (sessions, attendance, polls, chat messages) carry a version
column. A writer that loaded a stale copy fails its flush with
``StaleDataError``; the mutation is then replayed on freshly loaded state.
"""

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.errors import ConcurrentUpdate

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_conflict(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    label: str = "update",
    attempts: int = 0,
) -> T:
    """Run ``operation`` in a savepoint, replaying it when a concurrent writer won.

    ``operation`` must load the rows it mutates itself (with
    ``populate_existing``) so a replay sees the other writer's changes.
    """
    attempts = attempts or settings.OPTIMISTIC_RETRY_ATTEMPTS
    for attempt in range(1, attempts + 1):
        try:
            async with db.begin_nested():
                return await operation()
        except StaleDataError:
            logger.warning("Concurrent %s detected (attempt %d/%d)", label, attempt, attempts)
    raise ConcurrentUpdate()


async def best_effort(
    db: AsyncSession,
    operation: Callable[[], Awaitable[object]],
    *,
    label: str,
) -> bool:
    """Run a secondary write that must never fail the primary operation."""
    try:
        async with db.begin_nested():
            await operation()
        return True
    except Exception:
        logger.warning("Best-effort %s failed", label, exc_info=True)
        return False
