"""Pydantic schemas for class sessions, roster and presence."""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, ConfigDict


class SessionSettings(BaseModel):
    allow_late_join: Optional[bool] = None
    late_join_cutoff_minutes: Optional[int] = Field(None, ge=0, le=480)
    require_location_verification: Optional[bool] = None
    enable_chat: Optional[bool] = None
    enable_polls: Optional[bool] = None
    enable_screen_share: Optional[bool] = None
    enable_recording: Optional[bool] = None
    max_concurrent_students: Optional[int] = Field(None, ge=1, le=1000)


class SessionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    scheduled_start: datetime
    scheduled_end: Optional[datetime] = None
    duration_minutes: int = 60
    faculty_id: Optional[int] = Field(None, description="Required when an admin creates the session")
    settings: Optional[SessionSettings] = None
    student_ids: List[int] = Field(default_factory=list)


class SessionUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    subject: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    scheduled_start: Optional[datetime] = None
    scheduled_end: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    settings: Optional[SessionSettings] = None


class SessionResponse(BaseModel):
    id: int
    title: str
    subject: str
    description: Optional[str] = None
    faculty_id: Optional[int] = None
    college_id: Optional[int] = None
    scheduled_start: datetime
    scheduled_end: Optional[datetime] = None
    duration_minutes: int
    status: str
    is_active: bool
    actual_start_time: Optional[datetime] = None
    actual_end_time: Optional[datetime] = None
    settings: Dict[str, Any]
    analytics: Dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
    total: int
    page: int
    per_page: int


class EnrollRequest(BaseModel):
    student_ids: List[int] = Field(..., min_length=1)


class EnrollResponse(BaseModel):
    enrolled: int
    already_enrolled: int
    total_enrolled: int


class RosterEntryResponse(BaseModel):
    student_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    enrolled_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    is_present: bool
    last_activity: Optional[datetime] = None
    participation_score: float = 0


class JoinResponse(BaseModel):
    session_id: int
    user_id: int
    observer: bool = False
    joined_at: Optional[datetime] = None
    is_present: bool
    present_count: int


class LeaveResponse(BaseModel):
    session_id: int
    user_id: int
    left_at: Optional[datetime] = None
    is_present: bool
    present_count: int
