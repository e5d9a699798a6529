"""
Attendance & monitoring API routes.

Routes:
    POST   /api/v1/attendance/sessions/{session_id}/activity                    — Report an activity
    POST   /api/v1/attendance/sessions/{session_id}/location                    — Report own location
    POST   /api/v1/attendance/sessions/{session_id}/alerts                      — Raise an alert
    GET    /api/v1/attendance/sessions/{session_id}/alerts                      — Alerts with statistics
    GET    /api/v1/attendance/sessions/{session_id}/dashboard                   — Monitoring dashboard
    GET    /api/v1/attendance/sessions/{session_id}/summary                     — Attendance summary
    GET    /api/v1/attendance/sessions/{session_id}/students/{student_id}       — One student's record
    POST   /api/v1/attendance/sessions/{session_id}/students/{student_id}/alerts/{alert_id}/resolve
    POST   /api/v1/attendance/sessions/{session_id}/students/{student_id}/engagement
    GET    /api/v1/attendance/students/{student_id}/history                     — Attendance history
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.realtime.hub import Broadcaster
from app.schemas.attendance import (
    ActivityRequest,
    ActivityResponse,
    AlertCreate,
    AlertResolveRequest,
    AlertResponse,
    AttendanceResponse,
    EngagementRequest,
    LocationRequest,
    LocationResponse,
)
from app.services import monitoring_service
from app.services.access import ensure_manager, load_session
from app.middleware.rbac import (
    get_current_user,
    get_broadcaster,
    require_admin_or_faculty,
    require_student,
)

router = APIRouter(prefix="/api/v1/attendance", tags=["Attendance"])


# ─── Student reports ──────────────────────────────────────────────────────────

@router.post("/sessions/{session_id}/activity", response_model=ActivityResponse)
async def report_activity(
    session_id: int,
    body: ActivityRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    attendance, alerts = await monitoring_service.record_activity(
        db,
        current_user,
        session_id,
        body.activity_type,
        body.details,
        student_id=body.student_id,
        device_info=body.device_info,
        network_info=body.network_info,
        broadcaster=broadcaster,
    )
    return ActivityResponse(
        attendance=AttendanceResponse(**monitoring_service.attendance_view(attendance)),
        alerts=[AlertResponse(**monitoring_service.alert_view(a)) for a in alerts or []],
        warning=None if alerts is not None else f"Unknown activity type '{body.activity_type}' ignored",
    )


@router.post("/sessions/{session_id}/location", response_model=LocationResponse)
async def report_location(
    session_id: int,
    body: LocationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_student),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    attendance, alert = await monitoring_service.update_location(
        db,
        current_user,
        session_id,
        body.latitude,
        body.longitude,
        body.address,
        body.accuracy,
        broadcaster=broadcaster,
    )
    return LocationResponse(
        attendance=AttendanceResponse(**monitoring_service.attendance_view(attendance)),
        alert=AlertResponse(**monitoring_service.alert_view(alert)) if alert is not None else None,
    )


# ─── Alerts ───────────────────────────────────────────────────────────────────

@router.post(
    "/sessions/{session_id}/alerts",
    response_model=AlertResponse,
    status_code=status.HTTP_201_CREATED,
)
async def raise_alert(
    session_id: int,
    body: AlertCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    alert = await monitoring_service.add_alert(
        db,
        current_user,
        session_id,
        body.student_id,
        body.type,
        body.details,
        body.severity,
        body.extra,
        broadcaster=broadcaster,
    )
    return AlertResponse(**monitoring_service.alert_view(alert))


@router.get("/sessions/{session_id}/alerts")
async def list_alerts(
    session_id: int,
    severity: Optional[str] = Query(None, pattern="^(low|medium|high|critical)$"),
    alert_type: Optional[str] = Query(None, alias="type"),
    resolved: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
) -> Dict[str, Any]:
    return await monitoring_service.get_alerts(
        db,
        current_user,
        session_id,
        severity=severity,
        alert_type=alert_type,
        resolved=resolved,
        page=page,
        limit=limit,
    )


@router.post(
    "/sessions/{session_id}/students/{student_id}/alerts/{alert_id}/resolve",
    response_model=AlertResponse,
)
async def resolve(
    session_id: int,
    student_id: int,
    alert_id: int,
    body: Optional[AlertResolveRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    alert = await monitoring_service.resolve_alert(
        db,
        current_user,
        session_id,
        student_id,
        alert_id,
        body.resolution if body else None,
    )
    return AlertResponse(**monitoring_service.alert_view(alert))


# ─── Monitoring reads ─────────────────────────────────────────────────────────

@router.get("/sessions/{session_id}/dashboard")
async def dashboard(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return await monitoring_service.get_monitoring_dashboard(db, current_user, session_id)


@router.get("/sessions/{session_id}/summary")
async def summary(
    session_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
) -> Dict[str, Any]:
    return await monitoring_service.get_attendance_summary(db, current_user, session_id)


@router.get("/sessions/{session_id}/students/{student_id}", response_model=AttendanceResponse)
async def student_attendance(
    session_id: int,
    student_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return AttendanceResponse(
        **await monitoring_service.get_student_attendance(db, current_user, session_id, student_id)
    )


@router.post("/sessions/{session_id}/students/{student_id}/engagement", response_model=AttendanceResponse)
async def record_engagement(
    session_id: int,
    student_id: int,
    body: EngagementRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin_or_faculty),
):
    """Manual engagement adjustment (e.g. a question asked aloud)."""
    ensure_manager(await load_session(db, session_id), current_user)
    attendance = await monitoring_service.update_engagement(db, session_id, student_id, body.kind, body.delta)
    return AttendanceResponse(**monitoring_service.attendance_view(attendance))


@router.get("/students/{student_id}/history")
async def history(
    student_id: int,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[Dict[str, Any]]:
    return await monitoring_service.get_student_history(db, current_user, student_id, limit)
