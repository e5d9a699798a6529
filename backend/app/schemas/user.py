"""Pydantic schemas for colleges and users."""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field, ConfigDict


# ─── College Schemas ──────────────────────────────────────────────────────────

class CollegeCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=120)
    code: str = Field(..., min_length=2, max_length=20)
    address: Optional[str] = None


class CollegeResponse(BaseModel):
    id: int
    name: str
    code: str
    address: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ─── User Schemas ─────────────────────────────────────────────────────────────

class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: str = Field(..., pattern="^(ADMIN|FACULTY|STUDENT)$")


class UserCreate(UserBase):
    college_id: Optional[int] = None
    department: Optional[str] = Field(None, max_length=100)
    student_id: Optional[str] = Field(None, max_length=50)


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    role: str
    college_id: Optional[int] = None
    is_active: bool
    department: Optional[str] = None
    student_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    per_page: int
