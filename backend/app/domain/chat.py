"""Chat message mutations: edit, soft delete, reactions and read receipts."""

from datetime import datetime
from typing import Optional

from app.errors import EmptyContent, InvalidState, PermissionDenied
from app.models.chat import ChatMessage, ChatReaction, ChatReadReceipt


def clean_content(content: Optional[str]) -> str:
    text = (content or "").strip()
    if not text:
        raise EmptyContent("Message cannot be empty", fields={"message": "must not be empty"})
    return text


def _ensure_sender(message: ChatMessage, user_id: int, verb: str) -> None:
    if message.sender_id != user_id:
        raise PermissionDenied(f"You can only {verb} your own messages")


def edit(message: ChatMessage, user_id: int, content: str, now: datetime) -> None:
    _ensure_sender(message, user_id, "edit")
    if message.is_deleted:
        raise InvalidState("Cannot edit a deleted message")
    text = clean_content(content)
    if not message.is_edited:
        message.original_message = message.message
    message.message = text
    message.is_edited = True
    message.edited_at = now
    message.updated_at = now


def soft_delete(message: ChatMessage, user_id: int, now: datetime) -> None:
    _ensure_sender(message, user_id, "delete")
    if message.is_deleted:
        raise InvalidState("Message already deleted")
    message.is_deleted = True
    message.deleted_at = now
    message.deleted_by = user_id
    message.updated_at = now


def add_reaction(message: ChatMessage, user_id: int, emoji: str, now: datetime) -> bool:
    """Returns False when the user had already reacted with ``emoji``."""
    emoji = (emoji or "").strip()
    if not emoji:
        raise EmptyContent("Emoji is required", fields={"emoji": "must not be empty"})
    if any(r.emoji == emoji and r.user_id == user_id for r in message.reactions):
        return False
    message.reactions.append(ChatReaction(emoji=emoji, user_id=user_id, created_at=now))
    message.updated_at = now
    return True


def remove_reaction(message: ChatMessage, user_id: int, emoji: str, now: datetime) -> bool:
    """Returns False when there was nothing to remove.

    Once the last user's reaction is gone the emoji no longer appears in
    ``reaction_summary``.
    """
    emoji = (emoji or "").strip()
    reaction = next(
        (r for r in message.reactions if r.emoji == emoji and r.user_id == user_id),
        None,
    )
    if reaction is None:
        return False
    message.reactions.remove(reaction)
    message.updated_at = now
    return True


def mark_read(message: ChatMessage, user_id: int, now: datetime) -> bool:
    if any(r.user_id == user_id for r in message.read_receipts):
        return False
    message.read_receipts.append(ChatReadReceipt(user_id=user_id, read_at=now))
    message.updated_at = now
    return True


def can_view(message: ChatMessage, user_id: int) -> bool:
    if not message.is_private:
        return True
    return user_id in (message.sender_id, message.target_user_id)
