"""Chat message, reaction and read-receipt models."""

import enum
from datetime import datetime, timezone
from typing import Dict, List

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.database import Base


class MessageType(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"
    POLL_NOTIFICATION = "poll_notification"
    ANNOUNCEMENT = "announcement"


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    message = Column(Text, nullable=False)
    type = Column(String(30), nullable=False, default=MessageType.TEXT.value)
    is_private = Column(Boolean, nullable=False, default=False)
    target_user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reply_to_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True, index=True)

    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    original_message = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    reactions = relationship(
        "ChatReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ChatReaction.id",
    )
    read_receipts = relationship(
        "ChatReadReceipt",
        back_populates="message",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_chat_session_deleted_time", "session_id", "is_deleted", "timestamp"),
    )

    @property
    def reaction_summary(self) -> Dict[str, List[int]]:
        summary: Dict[str, List[int]] = {}
        for reaction in self.reactions:
            summary.setdefault(reaction.emoji, []).append(reaction.user_id)
        return summary


class ChatReaction(Base):
    __tablename__ = "chat_reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    emoji = Column(String(32), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    message = relationship("ChatMessage", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("message_id", "emoji", "user_id", name="uq_reaction_message_emoji_user"),
    )


class ChatReadReceipt(Base):
    __tablename__ = "chat_read_receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    read_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    message = relationship("ChatMessage", back_populates="read_receipts")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_read_receipt_message_user"),
    )
