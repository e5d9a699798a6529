"""Per-student-per-session attendance and monitoring models."""

import enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional

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


class AttendanceStatus(str, enum.Enum):
    JOINED = "joined"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPICIOUS = "suspicious"
    DISCONNECTED = "disconnected"
    LEFT = "left"


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, enum.Enum):
    TAB_SWITCH = "tab_switch"
    APP_SWITCH = "app_switch"
    WINDOW_FOCUS_LOSS = "window_focus_loss"
    SCREENSHOT_ATTEMPT = "screenshot_attempt"
    RECORDING_ATTEMPT = "recording_attempt"
    LOCATION_CHANGE = "location_change"
    INACTIVE_PERIOD = "inactive_period"
    NETWORK_DISCONNECT = "network_disconnect"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    UNAUTHORIZED_DEVICE = "unauthorized_device"


class Attendance(Base):
    __tablename__ = "attendance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Location
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String(300), nullable=True)
    accuracy = Column(Float, nullable=True)
    location_timestamp = Column(DateTime(timezone=True), nullable=True)
    location_verified = Column(Boolean, nullable=False, default=False)

    # Timing
    join_time = Column(DateTime(timezone=True), nullable=True)
    leave_time = Column(DateTime(timezone=True), nullable=True)
    total_duration = Column(Integer, nullable=False, default=0)
    is_present = Column(Boolean, nullable=False, default=False)

    # Activity monitoring counters
    tab_switches = Column(Integer, nullable=False, default=0)
    app_switches = Column(Integer, nullable=False, default=0)
    window_focus_loss = Column(Integer, nullable=False, default=0)
    inactive_time = Column(Integer, nullable=False, default=0)
    screenshot_attempts = Column(Integer, nullable=False, default=0)
    recording_attempts = Column(Integer, nullable=False, default=0)

    # Engagement
    messages_count = Column(Integer, nullable=False, default=0)
    polls_participated = Column(Integer, nullable=False, default=0)
    questions_asked = Column(Integer, nullable=False, default=0)
    reactions_given = Column(Integer, nullable=False, default=0)
    participation_score = Column(Float, nullable=False, default=0)

    # Network
    disconnections = Column(Integer, nullable=False, default=0)
    reconnections = Column(Integer, nullable=False, default=0)
    network_quality_score = Column(Float, nullable=False, default=100)
    network_info = Column(JSON, nullable=True)
    device_info = Column(JSON, nullable=True)

    # Calculated on every save
    behavior_score = Column(Float, nullable=False, default=100)
    engagement_level = Column(String(20), nullable=False, default="medium")
    risk_level = Column(String(20), nullable=False, default="low")

    status = Column(String(20), nullable=False, default=AttendanceStatus.JOINED.value, index=True)
    last_activity = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    session = relationship("ClassSession")
    student = relationship("User", lazy="joined")
    alerts = relationship(
        "AttendanceAlert",
        back_populates="attendance",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AttendanceAlert.id",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
        Index("ix_attendance_session_present", "session_id", "is_present"),
        Index("ix_attendance_status_activity", "status", "last_activity"),
    )

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def location(self) -> Optional[Dict[str, Any]]:
        if not self.has_location:
            return None
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
            "accuracy": self.accuracy,
            "timestamp": self.location_timestamp,
            "verified": self.location_verified,
        }

    @property
    def activity_monitoring(self) -> Dict[str, int]:
        return {
            "tab_switches": self.tab_switches,
            "app_switches": self.app_switches,
            "window_focus_loss": self.window_focus_loss,
            "inactive_time": self.inactive_time,
            "screenshot_attempts": self.screenshot_attempts,
            "recording_attempts": self.recording_attempts,
        }

    @property
    def engagement(self) -> Dict[str, Any]:
        return {
            "messages_count": self.messages_count,
            "polls_participated": self.polls_participated,
            "questions_asked": self.questions_asked,
            "reactions_given": self.reactions_given,
            "participation_score": self.participation_score,
        }

    @property
    def calculated(self) -> Dict[str, Any]:
        return {
            "behavior_score": self.behavior_score,
            "engagement_level": self.engagement_level,
            "risk_level": self.risk_level,
        }

    @property
    def alert_summary(self) -> Dict[str, int]:
        alerts = list(self.alerts or [])
        return {
            "total": len(alerts),
            "high": sum(1 for a in alerts if a.severity == AlertSeverity.HIGH.value),
            "critical": sum(1 for a in alerts if a.severity == AlertSeverity.CRITICAL.value),
            "unresolved": sum(1 for a in alerts if not a.is_resolved),
        }


class AttendanceAlert(Base):
    __tablename__ = "attendance_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    attendance_id = Column(Integer, ForeignKey("attendance.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(40), nullable=False, index=True)
    severity = Column(String(20), nullable=False, default=AlertSeverity.MEDIUM.value, index=True)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    details = Column(Text, nullable=True)
    extra = Column(JSON, nullable=True)
    is_resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    attendance = relationship("Attendance", back_populates="alerts")
