"""Class session and roster models."""

import enum
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    Float,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.database import Base


class SessionStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    PAUSED = "paused"
    ENDED = "ended"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {SessionStatus.ENDED.value, SessionStatus.CANCELLED.value}

SETTING_FIELDS = (
    "allow_late_join",
    "late_join_cutoff_minutes",
    "require_location_verification",
    "enable_chat",
    "enable_polls",
    "enable_screen_share",
    "enable_recording",
    "max_concurrent_students",
)


class ClassSession(Base):
    __tablename__ = "class_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    subject = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    faculty_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    college_id = Column(Integer, ForeignKey("colleges.id", ondelete="SET NULL"), nullable=True, index=True)

    scheduled_start = Column(DateTime(timezone=True), nullable=False)
    scheduled_end = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=False, default=60)

    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value, index=True)
    is_active = Column(Boolean, nullable=False, default=False)
    actual_start_time = Column(DateTime(timezone=True), nullable=True)
    actual_end_time = Column(DateTime(timezone=True), nullable=True)

    # Settings
    allow_late_join = Column(Boolean, nullable=False, default=True)
    late_join_cutoff_minutes = Column(Integer, nullable=False, default=15)
    require_location_verification = Column(Boolean, nullable=False, default=True)
    enable_chat = Column(Boolean, nullable=False, default=True)
    enable_polls = Column(Boolean, nullable=False, default=True)
    enable_screen_share = Column(Boolean, nullable=False, default=True)
    enable_recording = Column(Boolean, nullable=False, default=False)
    max_concurrent_students = Column(Integer, nullable=False, default=100)

    # Analytics, recomputed before every save
    total_enrolled = Column(Integer, nullable=False, default=0)
    total_joined = Column(Integer, nullable=False, default=0)
    max_concurrent_seen = Column(Integer, nullable=False, default=0)
    attendance_rate = Column(Float, nullable=False, default=0)
    total_polls = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    faculty = relationship("User", foreign_keys=[faculty_id], lazy="joined")
    roster = relationship(
        "RosterEntry",
        back_populates="session",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_sessions_faculty_start", "faculty_id", "scheduled_start"),
        Index("ix_sessions_college_status", "college_id", "status"),
    )

    @property
    def settings(self) -> Dict[str, Any]:
        return {field: getattr(self, field) for field in SETTING_FIELDS}

    @property
    def analytics(self) -> Dict[str, Any]:
        return {
            "total_enrolled": self.total_enrolled,
            "total_joined": self.total_joined,
            "max_concurrent_students": self.max_concurrent_seen,
            "attendance_rate": self.attendance_rate,
            "total_polls": self.total_polls,
        }

    def roster_entry(self, student_id: int):
        return next((entry for entry in self.roster if entry.student_id == student_id), None)

    def __repr__(self):
        return f"<ClassSession(id={self.id}, status='{self.status}')>"


class RosterEntry(Base):
    __tablename__ = "session_roster"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    enrolled_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    joined_at = Column(DateTime(timezone=True), nullable=True)
    left_at = Column(DateTime(timezone=True), nullable=True)
    is_present = Column(Boolean, nullable=False, default=False)
    last_activity = Column(DateTime(timezone=True), nullable=True)
    participation_score = Column(Float, nullable=False, default=0)

    session = relationship("ClassSession", back_populates="roster")

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_roster_session_student"),
    )
