"""Chat service: messages, edits, soft deletes, reactions and read receipts."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.domain import chat
from app.errors import FeatureDisabled, MessageNotFound, ValidationFailed
from app.models.chat import ChatMessage, MessageType
from app.models.user import User
from app.realtime.hub import Broadcaster, NullBroadcaster
from app.services import monitoring_service
from app.services.access import ensure_participant, is_student, load_session
from app.services.concurrency import retry_on_conflict
from app.utils import room_key, utcnow

logger = logging.getLogger(__name__)

MESSAGE_TYPES = {t.value for t in MessageType}


def message_view(message: ChatMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "session_id": message.session_id,
        "sender_id": message.sender_id,
        "message": None if message.is_deleted else message.message,
        "type": message.type,
        "is_private": message.is_private,
        "target_user_id": message.target_user_id,
        "reply_to_id": message.reply_to_id,
        "is_edited": message.is_edited,
        "edited_at": message.edited_at,
        "is_deleted": message.is_deleted,
        "reactions": message.reaction_summary,
        "read_by": [r.user_id for r in message.read_receipts],
        "timestamp": message.timestamp,
    }


async def load_message(db: AsyncSession, message_id: int) -> ChatMessage:
    result = await db.execute(
        select(ChatMessage).where(ChatMessage.id == message_id).execution_options(populate_existing=True)
    )
    message = result.scalar_one_or_none()
    if message is None:
        raise MessageNotFound()
    return message


async def _load_visible(db: AsyncSession, actor: User, message_id: int) -> ChatMessage:
    message = await load_message(db, message_id)
    ensure_participant(await load_session(db, message.session_id), actor)
    if not chat.can_view(message, actor.id):
        raise MessageNotFound()
    return message


async def _publish(broadcaster: Broadcaster, message: ChatMessage, event: str, payload: Dict[str, Any]) -> None:
    room = room_key(message.session_id)
    if message.is_private:
        # Only the two parties of a private message get its events.
        await broadcaster.publish_to(room, {message.sender_id, message.target_user_id}, event, payload)
        return
    await broadcaster.publish(room, event, payload)


async def send_message(
    db: AsyncSession,
    actor: User,
    session_id: int,
    content: str,
    type: str = MessageType.TEXT.value,
    is_private: bool = False,
    target_user_id: Optional[int] = None,
    reply_to_id: Optional[int] = None,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ChatMessage:
    text = chat.clean_content(content)
    if type not in MESSAGE_TYPES:
        raise ValidationFailed(fields={"type": f"Unknown message type '{type}'"})
    if is_private and target_user_id is None:
        raise ValidationFailed(fields={"target_user_id": "is required for private messages"})

    session = await load_session(db, session_id)
    ensure_participant(session, actor)
    if not session.enable_chat:
        raise FeatureDisabled("Chat is disabled for this session")

    if reply_to_id is not None:
        parent = await load_message(db, reply_to_id)
        if parent.session_id != session_id:
            raise ValidationFailed(fields={"reply_to_id": "must reference a message in the same session"})

    now = utcnow()
    message = ChatMessage(
        session_id=session_id,
        sender_id=actor.id,
        message=text,
        type=type,
        is_private=is_private,
        target_user_id=target_user_id if is_private else None,
        reply_to_id=reply_to_id,
        is_edited=False,
        is_deleted=False,
        timestamp=now,
        updated_at=now,
        reactions=[],
        read_receipts=[],
    )
    db.add(message)
    await db.flush()
    logger.info("Message %s sent in session %s by %s", message.id, session_id, actor.id)

    if is_student(actor):
        await monitoring_service.bump_engagement(db, session_id, actor.id, "message")

    await _publish(broadcaster, message, "chat_message", message_view(message))
    return message


async def edit_message(
    db: AsyncSession,
    actor: User,
    message_id: int,
    content: str,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ChatMessage:

    async def _apply():
        message = await load_message(db, message_id)
        chat.edit(message, actor.id, content, utcnow())
        return message

    message = await retry_on_conflict(db, _apply, label="message edit")
    logger.info("Message %s edited by %s", message_id, actor.id)
    await _publish(broadcaster, message, "chat_message_edited", message_view(message))
    return message


async def delete_message(
    db: AsyncSession,
    actor: User,
    message_id: int,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ChatMessage:

    async def _apply():
        message = await load_message(db, message_id)
        chat.soft_delete(message, actor.id, utcnow())
        return message

    message = await retry_on_conflict(db, _apply, label="message delete")
    logger.info("Message %s deleted by %s", message_id, actor.id)
    await _publish(broadcaster, message, "chat_message_deleted", {"message_id": message.id})
    return message


async def add_reaction(
    db: AsyncSession,
    actor: User,
    message_id: int,
    emoji: str,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ChatMessage:
    await _load_visible(db, actor, message_id)

    async def _apply():
        message = await load_message(db, message_id)
        added = chat.add_reaction(message, actor.id, emoji, utcnow())
        return message, added

    message, added = await retry_on_conflict(db, _apply, label="reaction")
    if added:
        if is_student(actor):
            await monitoring_service.bump_engagement(db, message.session_id, actor.id, "reaction")
        await _publish(
            broadcaster,
            message,
            "chat_reaction_added",
            {"message_id": message.id, "emoji": emoji.strip(), "user_id": actor.id, "reactions": message.reaction_summary},
        )
    return message


async def remove_reaction(
    db: AsyncSession,
    actor: User,
    message_id: int,
    emoji: str,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> ChatMessage:
    await _load_visible(db, actor, message_id)

    async def _apply():
        message = await load_message(db, message_id)
        removed = chat.remove_reaction(message, actor.id, emoji, utcnow())
        return message, removed

    message, removed = await retry_on_conflict(db, _apply, label="reaction removal")
    if removed:
        await _publish(
            broadcaster,
            message,
            "chat_reaction_removed",
            {"message_id": message.id, "emoji": emoji.strip(), "user_id": actor.id, "reactions": message.reaction_summary},
        )
    return message


async def mark_read(db: AsyncSession, actor: User, message_id: int) -> ChatMessage:
    await _load_visible(db, actor, message_id)

    async def _apply():
        message = await load_message(db, message_id)
        chat.mark_read(message, actor.id, utcnow())
        return message

    return await retry_on_conflict(db, _apply, label="read receipt")


async def get_history(
    db: AsyncSession,
    actor: User,
    session_id: int,
    limit: Optional[int] = None,
    before: Optional[datetime] = None,
) -> List[ChatMessage]:
    """Non-deleted messages the actor may see, newest first."""
    session = await load_session(db, session_id)
    ensure_participant(session, actor)

    filters = [
        ChatMessage.session_id == session_id,
        ChatMessage.is_deleted == False,  # noqa: E712
        or_(
            ChatMessage.is_private == False,  # noqa: E712
            ChatMessage.sender_id == actor.id,
            ChatMessage.target_user_id == actor.id,
        ),
    ]
    if before is not None:
        filters.append(ChatMessage.timestamp < before)

    result = await db.execute(
        select(ChatMessage)
        .where(and_(*filters))
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(limit or settings.CHAT_HISTORY_DEFAULT_LIMIT)
    )
    return list(result.scalars().all())
