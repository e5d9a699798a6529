"""Poll models.

A poll stores its option texts inline; votes and text answers are rows in
``poll_responses``. The ``(poll_id, user_id)`` constraint is what keeps one
user to a single option vote or a single text answer at any time.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Float,
    JSON,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.database import Base


class PollType(str, enum.Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TEXT_RESPONSE = "text_response"
    RATING = "rating"
    YES_NO = "yes_no"


class ShowResults(str, enum.Enum):
    NEVER = "never"
    AFTER_VOTE = "after_vote"
    AFTER_CLOSE = "after_close"
    REAL_TIME = "real_time"


CHOICE_TYPES = {PollType.SINGLE_CHOICE.value, PollType.MULTIPLE_CHOICE.value}


class Poll(Base):
    __tablename__ = "polls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    question = Column(String(500), nullable=False)
    type = Column(String(30), nullable=False, default=PollType.SINGLE_CHOICE.value)
    options = Column(JSON, nullable=False, default=list)

    # Settings
    allow_change_vote = Column(Boolean, nullable=False, default=False)
    show_results = Column(String(20), nullable=False, default=ShowResults.AFTER_VOTE.value)
    require_login = Column(Boolean, nullable=False, default=True)
    time_limit = Column(Integer, nullable=True)
    max_responses = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    # Results, recomputed before every save
    total_votes = Column(Integer, nullable=False, default=0)
    total_text_responses = Column(Integer, nullable=False, default=0)
    average_response_time = Column(Float, nullable=False, default=0)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    responses = relationship(
        "PollResponse",
        back_populates="poll",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PollResponse.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_polls_session_created", "session_id", "created_at"),
        Index("ix_polls_active_expires", "is_active", "expires_at"),
    )

    @property
    def settings(self):
        return {
            "allow_change_vote": self.allow_change_vote,
            "show_results": self.show_results,
            "require_login": self.require_login,
            "time_limit": self.time_limit,
            "max_responses": self.max_responses,
        }

    @property
    def results(self):
        return {
            "total_votes": self.total_votes,
            "total_text_responses": self.total_text_responses,
            "average_response_time": self.average_response_time,
        }


class PollResponse(Base):
    __tablename__ = "poll_responses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    poll_id = Column(Integer, ForeignKey("polls.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    option_index = Column(Integer, nullable=True)
    text = Column(Text, nullable=True)
    response_time = Column(Float, nullable=True)
    submitted_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    poll = relationship("Poll", back_populates="responses")

    __table_args__ = (
        UniqueConstraint("poll_id", "user_id", name="uq_poll_response_user"),
    )
