"""Attendance monitoring rules: alerts, location checks and derived scores."""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from app.config import settings
from app.errors import AlertNotFound, InvalidCoordinate, ValidationFailed
from app.models.attendance import (
    AlertSeverity,
    AlertType,
    Attendance,
    AttendanceAlert,
    AttendanceStatus,
)
from app.utils import to_utc

EARTH_RADIUS_KM = 6371.0

ALERT_SEVERITY = {
    AlertType.TAB_SWITCH.value: AlertSeverity.MEDIUM.value,
    AlertType.APP_SWITCH.value: AlertSeverity.HIGH.value,
    AlertType.WINDOW_FOCUS_LOSS.value: AlertSeverity.LOW.value,
    AlertType.SCREENSHOT_ATTEMPT.value: AlertSeverity.HIGH.value,
    AlertType.RECORDING_ATTEMPT.value: AlertSeverity.CRITICAL.value,
    AlertType.NETWORK_DISCONNECT.value: AlertSeverity.MEDIUM.value,
    AlertType.SUSPICIOUS_ACTIVITY.value: AlertSeverity.HIGH.value,
}

ALERT_COUNTERS = {
    AlertType.TAB_SWITCH.value: "tab_switches",
    AlertType.APP_SWITCH.value: "app_switches",
    AlertType.WINDOW_FOCUS_LOSS.value: "window_focus_loss",
    AlertType.SCREENSHOT_ATTEMPT.value: "screenshot_attempts",
    AlertType.RECORDING_ATTEMPT.value: "recording_attempts",
}

DEFAULT_ALERT_DETAILS = {
    AlertType.TAB_SWITCH.value: "Student switched tabs",
    AlertType.APP_SWITCH.value: "Student switched applications",
    AlertType.WINDOW_FOCUS_LOSS.value: "Window lost focus",
    AlertType.SCREENSHOT_ATTEMPT.value: "Screenshot attempt detected",
    AlertType.RECORDING_ATTEMPT.value: "Screen recording attempt detected",
    AlertType.SUSPICIOUS_ACTIVITY.value: "Suspicious activity detected",
}

ENGAGEMENT_COUNTERS = {
    "message": "messages_count",
    "poll": "polls_participated",
    "question": "questions_asked",
    "reaction": "reactions_given",
}

SEVERITY_ORDER = [s.value for s in AlertSeverity]


# ─── Pure calculations ────────────────────────────────────────────────────────

def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def participation_score(messages: int, polls: int, questions: int, reactions: int) -> int:
    return min(
        100,
        50
        + min(messages * 2, 20)
        + min(polls * 5, 15)
        + min(questions * 3, 10)
        + min(reactions * 1, 5),
    )


def behavior_score(
    tab_switches: int,
    app_switches: int,
    window_focus_loss: int,
    screenshot_attempts: int,
    recording_attempts: int,
) -> int:
    score = (
        100
        - 2 * tab_switches
        - 5 * app_switches
        - 1 * window_focus_loss
        - 20 * screenshot_attempts
        - 30 * recording_attempts
    )
    return max(0, min(100, score))


def engagement_level(score: float) -> str:
    if score >= 80:
        return "very_high"
    if score >= 60:
        return "high"
    if score >= 40:
        return "medium"
    if score >= 20:
        return "low"
    return "very_low"


def risk_level(behavior: float, severities: Iterable[str]) -> str:
    severities = list(severities)
    critical = severities.count(AlertSeverity.CRITICAL.value)
    high = severities.count(AlertSeverity.HIGH.value)
    if critical > 0 or behavior < 30:
        return "critical"
    if high > 2 or behavior < 50:
        return "high"
    if high > 0 or behavior < 70:
        return "medium"
    return "low"


def total_duration_minutes(
    join_time: Optional[datetime],
    leave_time: Optional[datetime],
    is_present: bool,
    now: datetime,
) -> int:
    if join_time is None:
        return 0
    if leave_time is not None:
        delta = to_utc(leave_time) - to_utc(join_time)
    elif is_present:
        delta = now - to_utc(join_time)
    else:
        return 0
    return max(0, int(delta.total_seconds() // 60))


def validate_coordinates(latitude: Any, longitude: Any) -> None:
    fields = {}
    try:
        lat_ok = -90 <= float(latitude) <= 90
    except (TypeError, ValueError):
        lat_ok = False
    try:
        lng_ok = -180 <= float(longitude) <= 180
    except (TypeError, ValueError):
        lng_ok = False
    if not lat_ok:
        fields["latitude"] = "Latitude must be between -90 and 90"
    if not lng_ok:
        fields["longitude"] = "Longitude must be between -180 and 180"
    if fields:
        raise InvalidCoordinate(fields=fields)


# ─── Record mutations ─────────────────────────────────────────────────────────

def recompute(attendance: Attendance, now: datetime) -> None:
    """Refresh every derived field. Run before each save of an attendance record."""
    attendance.total_duration = total_duration_minutes(
        attendance.join_time, attendance.leave_time, bool(attendance.is_present), now
    )
    attendance.participation_score = _participation(attendance)
    attendance.behavior_score = behavior_score(
        attendance.tab_switches or 0,
        attendance.app_switches or 0,
        attendance.window_focus_loss or 0,
        attendance.screenshot_attempts or 0,
        attendance.recording_attempts or 0,
    )
    attendance.engagement_level = engagement_level(attendance.participation_score)
    attendance.risk_level = risk_level(
        attendance.behavior_score, (alert.severity for alert in attendance.alerts)
    )
    attendance.updated_at = now


def _participation(attendance: Attendance) -> int:
    return participation_score(
        attendance.messages_count or 0,
        attendance.polls_participated or 0,
        attendance.questions_asked or 0,
        attendance.reactions_given or 0,
    )


def add_alert(
    attendance: Attendance,
    alert_type: str,
    details: Optional[str],
    severity: Optional[str],
    now: datetime,
    extra: Optional[Dict[str, Any]] = None,
) -> AttendanceAlert:
    severity = severity or ALERT_SEVERITY.get(alert_type, AlertSeverity.MEDIUM.value)
    if severity not in SEVERITY_ORDER:
        raise ValidationFailed(fields={"severity": f"Unknown severity '{severity}'"})
    alert = AttendanceAlert(
        type=alert_type,
        severity=severity,
        details=details or DEFAULT_ALERT_DETAILS.get(alert_type),
        extra=extra,
        timestamp=now,
        is_resolved=False,
    )
    attendance.alerts.append(alert)
    counter = ALERT_COUNTERS.get(alert_type)
    if counter:
        setattr(attendance, counter, (getattr(attendance, counter) or 0) + 1)
    attendance.last_activity = now
    return alert


def _split_details(details: Any):
    """Activity details arrive either as a message string or a structured dict."""
    if isinstance(details, dict):
        message = details.get("message") or details.get("details")
        return (str(message) if message else None), details
    if details is None:
        return None, None
    return str(details), None


def _flag(details: Any, *keys: str) -> bool:
    if not isinstance(details, dict):
        return False
    return any(bool(details.get(key)) for key in keys)


def apply_activity(
    attendance: Attendance,
    activity_type: str,
    details: Any,
    now: datetime,
) -> Optional[List[AttendanceAlert]]:
    """Apply one reported activity. Returns the raised alerts, or ``None`` for unknown types."""
    raised: List[AttendanceAlert] = []

    if activity_type == "heartbeat":
        attendance.status = AttendanceStatus.ACTIVE.value
    elif activity_type in ALERT_COUNTERS:
        message, extra = _split_details(details)
        raised.append(add_alert(attendance, activity_type, message, None, now, extra))
    elif activity_type == "inactive_period":
        duration = details.get("duration") if isinstance(details, dict) else None
        try:
            seconds = max(0, int(duration))
        except (TypeError, ValueError):
            seconds = 0
        attendance.inactive_time = (attendance.inactive_time or 0) + seconds
        attendance.status = AttendanceStatus.INACTIVE.value
    elif activity_type == "network_change":
        if _flag(details, "connection_lost", "connectionLost"):
            attendance.disconnections = (attendance.disconnections or 0) + 1
            attendance.status = AttendanceStatus.DISCONNECTED.value
            raised.append(
                add_alert(attendance, AlertType.NETWORK_DISCONNECT.value, "Connection lost", None, now)
            )
        elif _flag(details, "connection_restored", "connectionRestored"):
            attendance.reconnections = (attendance.reconnections or 0) + 1
            attendance.status = AttendanceStatus.ACTIVE.value
    elif activity_type == "suspicious_activity":
        message, extra = _split_details(details)
        attendance.status = AttendanceStatus.SUSPICIOUS.value
        raised.append(
            add_alert(attendance, AlertType.SUSPICIOUS_ACTIVITY.value, message, None, now, extra)
        )
    else:
        return None

    attendance.last_activity = now
    return raised


def apply_location(
    attendance: Attendance,
    latitude: float,
    longitude: float,
    now: datetime,
    address: Optional[str] = None,
    accuracy: Optional[float] = None,
) -> Optional[AttendanceAlert]:
    """Overwrite the last known location; alert when the student moved noticeably."""
    validate_coordinates(latitude, longitude)
    latitude = float(latitude)
    longitude = float(longitude)

    alert = None
    previous = attendance.location
    if previous is not None:
        distance = haversine_km(previous["latitude"], previous["longitude"], latitude, longitude)
        if distance > settings.LOCATION_CHANGE_ALERT_KM:
            severity = (
                AlertSeverity.HIGH.value
                if distance > settings.LOCATION_CHANGE_HIGH_KM
                else AlertSeverity.MEDIUM.value
            )
            alert = add_alert(
                attendance,
                AlertType.LOCATION_CHANGE.value,
                f"Location changed by {distance:.2f} km",
                severity,
                now,
                extra={
                    "previous_location": _jsonable_location(previous),
                    "new_location": {"latitude": latitude, "longitude": longitude, "address": address},
                    "distance_km": round(distance, 3),
                },
            )

    attendance.latitude = latitude
    attendance.longitude = longitude
    attendance.address = address
    attendance.accuracy = accuracy
    attendance.location_timestamp = now
    attendance.location_verified = True
    attendance.last_activity = now
    return alert


def _jsonable_location(location: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "latitude": location["latitude"],
        "longitude": location["longitude"],
        "address": location.get("address"),
    }


def update_engagement(attendance: Attendance, kind: str, now: datetime, delta: int = 1) -> int:
    counter = ENGAGEMENT_COUNTERS.get(kind)
    if counter is None:
        raise ValidationFailed(fields={"kind": f"Unknown engagement kind '{kind}'"})
    setattr(attendance, counter, max(0, (getattr(attendance, counter) or 0) + delta))
    attendance.participation_score = _participation(attendance)
    attendance.last_activity = now
    return attendance.participation_score


def resolve_alert(
    attendance: Attendance,
    alert_id: int,
    resolved_by: int,
    now: datetime,
    resolution: Optional[str] = None,
) -> AttendanceAlert:
    alert = next((a for a in attendance.alerts if a.id == alert_id), None)
    if alert is None:
        raise AlertNotFound()
    alert.is_resolved = True
    alert.resolved_at = now
    alert.resolved_by = resolved_by
    if resolution:
        alert.extra = {**(alert.extra or {}), "resolution": resolution}
    return alert


def mark_joined(attendance: Attendance, now: datetime) -> None:
    if attendance.join_time is None:
        attendance.join_time = now
    attendance.leave_time = None
    attendance.is_present = True
    attendance.status = AttendanceStatus.JOINED.value
    attendance.last_activity = now


def mark_left(attendance: Attendance, now: datetime) -> None:
    attendance.leave_time = now
    attendance.is_present = False
    attendance.status = AttendanceStatus.LEFT.value
    attendance.last_activity = now
