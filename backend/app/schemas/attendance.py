"""Pydantic schemas for attendance monitoring."""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, ConfigDict


class ActivityRequest(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=40)
    details: Optional[Any] = None
    student_id: Optional[int] = Field(None, description="Required when faculty record activity for a student")
    device_info: Optional[Dict[str, Any]] = None
    network_info: Optional[Dict[str, Any]] = None


class LocationRequest(BaseModel):
    # Range checks happen in the monitoring domain so they surface as invalid_coordinate.
    latitude: float
    longitude: float
    address: Optional[str] = Field(None, max_length=300)
    accuracy: Optional[float] = Field(None, ge=0)


class AlertCreate(BaseModel):
    student_id: int
    type: str
    details: Optional[str] = None
    severity: Optional[str] = Field(None, pattern="^(low|medium|high|critical)$")
    extra: Optional[Dict[str, Any]] = None


class AlertResolveRequest(BaseModel):
    resolution: Optional[str] = Field(None, max_length=1000)


class AlertResponse(BaseModel):
    id: int
    type: str
    severity: str
    timestamp: Optional[datetime] = None
    details: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceResponse(BaseModel):
    id: int
    session_id: int
    student_id: int
    status: str
    is_present: bool
    join_time: Optional[datetime] = None
    leave_time: Optional[datetime] = None
    total_duration: int
    location: Optional[Dict[str, Any]] = None
    activity_monitoring: Dict[str, int]
    engagement: Dict[str, Any]
    network: Dict[str, Any]
    calculated: Dict[str, Any]
    alert_summary: Dict[str, int]
    last_activity: Optional[datetime] = None
    alerts: Optional[List[AlertResponse]] = None


class ActivityResponse(BaseModel):
    attendance: AttendanceResponse
    alerts: List[AlertResponse] = Field(default_factory=list)
    warning: Optional[str] = None


class LocationResponse(BaseModel):
    attendance: AttendanceResponse
    alert: Optional[AlertResponse] = None


class EngagementRequest(BaseModel):
    kind: str = Field(..., pattern="^(message|poll|question|reaction)$")
    delta: int = Field(1, ge=1, le=100)
