"""Attendance & monitoring service: activity, location, alerts, engagement and reads."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain import monitoring
from app.errors import AttendanceNotFound, NotEnrolled, PermissionDenied, ValidationFailed
from app.models.attendance import AlertSeverity, AlertType, Attendance, AttendanceAlert, AttendanceStatus
from app.models.notification import NotificationType
from app.models.session import ClassSession
from app.models.user import User, UserRole
from app.realtime.hub import Broadcaster, NullBroadcaster
from app.services import notification_service
from app.services.access import (
    can_manage,
    ensure_manager,
    is_student,
    load_session,
)
from app.services.concurrency import best_effort, retry_on_conflict
from app.utils import room_key, round2, utcnow

logger = logging.getLogger(__name__)

ALERT_TYPES = {t.value for t in AlertType}
NOTIFY_SEVERITIES = {AlertSeverity.HIGH.value, AlertSeverity.CRITICAL.value}


# ─── Loading ──────────────────────────────────────────────────────────────────

async def find_attendance(db: AsyncSession, session_id: int, student_id: int) -> Optional[Attendance]:
    result = await db.execute(
        select(Attendance)
        .where(Attendance.session_id == session_id, Attendance.student_id == student_id)
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()


async def get_attendance(db: AsyncSession, session_id: int, student_id: int) -> Attendance:
    attendance = await find_attendance(db, session_id, student_id)
    if attendance is None:
        raise AttendanceNotFound()
    return attendance


async def ensure_attendance(db: AsyncSession, session_id: int, student_id: int) -> Attendance:
    """Return the student's record for the session, creating it on first contact."""
    attendance = await find_attendance(db, session_id, student_id)
    if attendance is None:
        attendance = Attendance(
            session_id=session_id,
            student_id=student_id,
            status=AttendanceStatus.JOINED.value,
            is_present=False,
            location_verified=False,
            alerts=[],
        )
        db.add(attendance)
    return attendance


def _resolve_student(actor: User, student_id: Optional[int]) -> int:
    if is_student(actor):
        if student_id is not None and student_id != actor.id:
            raise PermissionDenied("Students can only report their own activity")
        return actor.id
    if student_id is None:
        raise ValidationFailed(fields={"student_id": "is required"})
    return student_id


def _merge_info(attendance: Attendance, device_info: Optional[Dict[str, Any]], network_info: Optional[Dict[str, Any]]) -> None:
    if device_info:
        attendance.device_info = {**(attendance.device_info or {}), **device_info}
    if network_info:
        attendance.network_info = {**(attendance.network_info or {}), **network_info}
        quality = network_info.get("quality_score", network_info.get("qualityScore"))
        if quality is not None:
            try:
                attendance.network_quality_score = max(0.0, min(100.0, float(quality)))
            except (TypeError, ValueError):
                pass


# ─── Views ────────────────────────────────────────────────────────────────────

def alert_view(alert: AttendanceAlert) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "type": alert.type,
        "severity": alert.severity,
        "timestamp": alert.timestamp,
        "details": alert.details,
        "extra": alert.extra,
        "is_resolved": alert.is_resolved,
        "resolved_at": alert.resolved_at,
        "resolved_by": alert.resolved_by,
    }


def attendance_view(attendance: Attendance, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "id": attendance.id,
        "session_id": attendance.session_id,
        "student_id": attendance.student_id,
        "status": attendance.status,
        "is_present": attendance.is_present,
        "join_time": attendance.join_time,
        "leave_time": attendance.leave_time,
        "total_duration": monitoring.total_duration_minutes(
            attendance.join_time, attendance.leave_time, bool(attendance.is_present), now
        ),
        "location": attendance.location,
        "activity_monitoring": attendance.activity_monitoring,
        "engagement": attendance.engagement,
        "network": {
            "disconnections": attendance.disconnections,
            "reconnections": attendance.reconnections,
            "quality_score": attendance.network_quality_score,
        },
        "calculated": attendance.calculated,
        "alert_summary": attendance.alert_summary,
        "last_activity": attendance.last_activity,
    }


def _student_view(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.full_name,
        "email": user.email,
        "student_id": user.student_id,
    }


# ─── Mutations ────────────────────────────────────────────────────────────────

async def _notify_owner_of_alerts(
    db: AsyncSession,
    session_id: int,
    student_id: int,
    alerts: List[AttendanceAlert],
) -> None:
    serious = [a for a in alerts if a.severity in NOTIFY_SEVERITIES]
    if not serious:
        return
    owner_id = (
        await db.execute(select(ClassSession.faculty_id).where(ClassSession.id == session_id))
    ).scalar_one_or_none()
    if owner_id is None:
        return
    for alert in serious:
        notification_service.notify_many(
            db,
            [owner_id],
            NotificationType.ALERT_GENERATED.value,
            f"{alert.severity.title()} alert: {alert.type}",
            alert.details or alert.type,
            sender_id=student_id,
            data={"session_id": session_id, "student_id": student_id, "alert_id": alert.id},
        )


async def record_activity(
    db: AsyncSession,
    actor: User,
    session_id: int,
    activity_type: str,
    details: Any = None,
    *,
    student_id: Optional[int] = None,
    device_info: Optional[Dict[str, Any]] = None,
    network_info: Optional[Dict[str, Any]] = None,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Tuple[Attendance, Optional[List[AttendanceAlert]]]:
    """Apply one monitored activity to the student's attendance record.

    The alert list is ``None`` when the activity type is not recognised; the
    record is left untouched in that case.
    """
    student_id = _resolve_student(actor, student_id)
    if not is_student(actor):
        ensure_manager(await load_session(db, session_id), actor)

    async def _apply():
        attendance = await get_attendance(db, session_id, student_id)
        now = utcnow()
        raised = monitoring.apply_activity(attendance, activity_type, details, now)
        if raised is None:
            return attendance, None
        _merge_info(attendance, device_info, network_info)
        monitoring.recompute(attendance, now)
        return attendance, raised

    attendance, raised = await retry_on_conflict(db, _apply, label="activity")
    if raised is None:
        logger.warning("Unknown activity type '%s' from student %s in session %s", activity_type, student_id, session_id)
        return attendance, None

    logger.info("Activity '%s' recorded for student %s in session %s", activity_type, student_id, session_id)
    await _notify_owner_of_alerts(db, session_id, student_id, raised)
    await broadcaster.publish(
        room_key(session_id),
        "student_activity",
        {
            "session_id": session_id,
            "student_id": student_id,
            "activity_type": activity_type,
            "status": attendance.status,
            "calculated": attendance.calculated,
            "alerts": [alert_view(a) for a in raised],
        },
    )
    return attendance, raised


async def update_location(
    db: AsyncSession,
    actor: User,
    session_id: int,
    latitude: float,
    longitude: float,
    address: Optional[str] = None,
    accuracy: Optional[float] = None,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> Tuple[Attendance, Optional[AttendanceAlert]]:
    """Record the student's current location, creating the attendance record if needed."""
    monitoring.validate_coordinates(latitude, longitude)
    student_id = actor.id

    async def _apply():
        session = await load_session(db, session_id)
        if session.roster_entry(student_id) is None:
            raise NotEnrolled()
        attendance = await ensure_attendance(db, session_id, student_id)
        now = utcnow()
        alert = monitoring.apply_location(attendance, latitude, longitude, now, address, accuracy)
        monitoring.recompute(attendance, now)
        return attendance, alert

    attendance, alert = await retry_on_conflict(db, _apply, label="location update")
    logger.info("Location updated for student %s in session %s", student_id, session_id)
    if alert is not None:
        await _notify_owner_of_alerts(db, session_id, student_id, [alert])

    await broadcaster.publish(
        room_key(session_id),
        "student_location_update",
        {
            "session_id": session_id,
            "student_id": student_id,
            "location": attendance.location,
            "alert": alert_view(alert) if alert is not None else None,
        },
    )
    return attendance, alert


async def add_alert(
    db: AsyncSession,
    actor: User,
    session_id: int,
    student_id: int,
    alert_type: str,
    details: Optional[str] = None,
    severity: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
    *,
    broadcaster: Broadcaster = NullBroadcaster(),
) -> AttendanceAlert:
    """Raise an alert by hand (faculty/admin)."""
    if alert_type not in ALERT_TYPES:
        raise ValidationFailed(fields={"type": f"Unknown alert type '{alert_type}'"})
    ensure_manager(await load_session(db, session_id), actor)

    async def _apply():
        attendance = await get_attendance(db, session_id, student_id)
        now = utcnow()
        alert = monitoring.add_alert(attendance, alert_type, details, severity, now, extra)
        monitoring.recompute(attendance, now)
        return alert

    alert = await retry_on_conflict(db, _apply, label="alert")
    logger.info("Alert %s (%s) added for student %s in session %s", alert.id, alert.severity, student_id, session_id)
    await _notify_owner_of_alerts(db, session_id, student_id, [alert])
    await broadcaster.publish(
        room_key(session_id),
        "monitoring_alert",
        {"session_id": session_id, "student_id": student_id, "alert": alert_view(alert)},
    )
    return alert


async def update_engagement(
    db: AsyncSession,
    session_id: int,
    student_id: int,
    kind: str,
    delta: int = 1,
) -> Attendance:
    async def _apply():
        attendance = await get_attendance(db, session_id, student_id)
        now = utcnow()
        monitoring.update_engagement(attendance, kind, now, delta)
        monitoring.recompute(attendance, now)
        return attendance

    return await retry_on_conflict(db, _apply, label="engagement update")


async def bump_engagement(db: AsyncSession, session_id: int, student_id: int, kind: str) -> bool:
    """Count an engagement event if the student has an attendance record; never raises."""

    async def _apply():
        attendance = await find_attendance(db, session_id, student_id)
        if attendance is None:
            return
        now = utcnow()
        monitoring.update_engagement(attendance, kind, now)
        monitoring.recompute(attendance, now)

    return await best_effort(db, _apply, label=f"{kind} engagement update")


async def resolve_alert(
    db: AsyncSession,
    actor: User,
    session_id: int,
    student_id: int,
    alert_id: int,
    resolution: Optional[str] = None,
) -> AttendanceAlert:
    ensure_manager(await load_session(db, session_id), actor)

    async def _apply():
        attendance = await get_attendance(db, session_id, student_id)
        now = utcnow()
        alert = monitoring.resolve_alert(attendance, alert_id, actor.id, now, resolution)
        monitoring.recompute(attendance, now)
        return alert

    alert = await retry_on_conflict(db, _apply, label="alert resolution")
    logger.info("Alert %s resolved by %s", alert_id, actor.id)
    return alert


async def check_out(db: AsyncSession, session_id: int, student_ids: List[int], now: datetime) -> int:
    """Mark the attendance of ``student_ids`` as left. Part of the caller's write."""
    if not student_ids:
        return 0
    result = await db.execute(
        select(Attendance)
        .where(Attendance.session_id == session_id, Attendance.student_id.in_(student_ids))
        .execution_options(populate_existing=True)
    )
    records = list(result.unique().scalars().all())
    for attendance in records:
        monitoring.mark_left(attendance, now)
        monitoring.recompute(attendance, now)
    return len(records)


# ─── Reads ────────────────────────────────────────────────────────────────────

async def get_student_attendance(
    db: AsyncSession,
    actor: User,
    session_id: int,
    student_id: int,
) -> Dict[str, Any]:
    if is_student(actor):
        if student_id != actor.id:
            raise PermissionDenied("Students can only view their own attendance")
    else:
        ensure_manager(await load_session(db, session_id), actor)
    attendance = await get_attendance(db, session_id, student_id)
    view = attendance_view(attendance)
    view["alerts"] = [alert_view(a) for a in attendance.alerts]
    return view


async def get_monitoring_dashboard(db: AsyncSession, actor: User, session_id: int) -> Dict[str, Any]:
    """Per-student monitoring view of a session, most recent join first."""
    session = await load_session(db, session_id)
    if not can_manage(session, actor):
        raise PermissionDenied("Only the session owner or an admin can view monitoring")

    result = await db.execute(
        select(Attendance)
        .where(Attendance.session_id == session_id)
        .order_by(Attendance.join_time.desc().nulls_last(), Attendance.id.desc())
    )
    records = list(result.unique().scalars().all())
    now = utcnow()

    students = []
    for attendance in records:
        row = attendance_view(attendance, now)
        row["student"] = _student_view(attendance.student)
        students.append(row)

    return {
        "session": {
            "id": session.id,
            "title": session.title,
            "status": session.status,
            "actual_start_time": session.actual_start_time,
            "total_enrolled": session.total_enrolled,
        },
        "students": students,
        "summary": {
            "total": len(records),
            "present": sum(1 for a in records if a.is_present),
            "high_risk": sum(1 for a in records if a.risk_level in ("high", "critical")),
            "unresolved_alerts": sum(a.alert_summary["unresolved"] for a in records),
        },
    }


async def get_alerts(
    db: AsyncSession,
    actor: User,
    session_id: int,
    severity: Optional[str] = None,
    alert_type: Optional[str] = None,
    resolved: Optional[bool] = None,
    page: int = 1,
    limit: int = 50,
) -> Dict[str, Any]:
    ensure_manager(await load_session(db, session_id), actor)

    filters = [Attendance.session_id == session_id]
    if severity:
        filters.append(AttendanceAlert.severity == severity)
    if alert_type:
        filters.append(AttendanceAlert.type == alert_type)
    if resolved is not None:
        filters.append(AttendanceAlert.is_resolved == resolved)
    total = (
        await db.execute(
            select(func.count(AttendanceAlert.id))
            .join(Attendance, AttendanceAlert.attendance_id == Attendance.id)
            .where(and_(*filters))
        )
    ).scalar() or 0

    result = await db.execute(
        select(AttendanceAlert, Attendance.student_id, User)
        .join(Attendance, AttendanceAlert.attendance_id == Attendance.id)
        .join(User, Attendance.student_id == User.id)
        .where(and_(*filters))
        .order_by(AttendanceAlert.timestamp.desc(), AttendanceAlert.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    alerts = []
    for alert, student_id, user in result.all():
        row = alert_view(alert)
        row["student_id"] = student_id
        row["student"] = _student_view(user)
        alerts.append(row)

    stats_rows = await db.execute(
        select(AttendanceAlert.severity, AttendanceAlert.is_resolved, func.count(AttendanceAlert.id))
        .join(Attendance, AttendanceAlert.attendance_id == Attendance.id)
        .where(Attendance.session_id == session_id)
        .group_by(AttendanceAlert.severity, AttendanceAlert.is_resolved)
    )
    by_severity = {s.value: 0 for s in AlertSeverity}
    unresolved = 0
    for sev, is_resolved, count in stats_rows.all():
        by_severity[sev] = by_severity.get(sev, 0) + count
        if not is_resolved:
            unresolved += count

    return {
        "alerts": alerts,
        "total": total,
        "page": page,
        "limit": limit,
        "statistics": {
            "total": sum(by_severity.values()),
            "by_severity": by_severity,
            "unresolved": unresolved,
        },
    }


async def get_attendance_summary(db: AsyncSession, actor: User, session_id: int) -> Dict[str, Any]:
    ensure_manager(await load_session(db, session_id), actor)

    row = (
        await db.execute(
            select(
                func.count(Attendance.id),
                func.sum(case((Attendance.is_present == True, 1), else_=0)),  # noqa: E712
                func.avg(Attendance.total_duration),
                func.avg(Attendance.behavior_score),
                func.avg(Attendance.participation_score),
            ).where(Attendance.session_id == session_id)
        )
    ).one()
    total_students, present, avg_duration, avg_behavior, avg_engagement = row
    total_alerts = (
        await db.execute(
            select(func.count(AttendanceAlert.id))
            .join(Attendance, AttendanceAlert.attendance_id == Attendance.id)
            .where(Attendance.session_id == session_id)
        )
    ).scalar() or 0

    if not total_students:
        return {
            "total_students": 0,
            "present_students": 0,
            "attendance_rate": 0,
            "average_duration": 0,
            "total_alerts": 0,
            "average_behavior_score": 100,
            "average_engagement": 0,
        }
    present = int(present or 0)
    return {
        "total_students": total_students,
        "present_students": present,
        "attendance_rate": round2(present / total_students * 100),
        "average_duration": round2(avg_duration or 0),
        "total_alerts": total_alerts,
        "average_behavior_score": round2(avg_behavior if avg_behavior is not None else 100),
        "average_engagement": round2(avg_engagement or 0),
    }


async def get_student_history(
    db: AsyncSession,
    actor: User,
    student_id: int,
    limit: int = 20,
) -> List[Dict[str, Any]]:
    if is_student(actor) and actor.id != student_id:
        raise PermissionDenied("Students can only view their own history")

    query = (
        select(Attendance, ClassSession.title, ClassSession.subject, ClassSession.faculty_id, ClassSession.college_id)
        .join(ClassSession, Attendance.session_id == ClassSession.id)
        .where(Attendance.student_id == student_id)
        .order_by(Attendance.created_at.desc(), Attendance.id.desc())
        .limit(limit)
    )
    result = await db.execute(query)
    history = []
    for attendance, title, subject, faculty_id, college_id in result.unique().all():
        if not is_student(actor):
            if actor.role == UserRole.FACULTY and faculty_id != actor.id:
                continue
            if actor.college_id is not None and college_id != actor.college_id:
                continue
        row = attendance_view(attendance)
        row["session"] = {"id": attendance.session_id, "title": title, "subject": subject}
        history.append(row)
    return history
