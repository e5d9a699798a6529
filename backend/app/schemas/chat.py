"""Pydantic schemas for session chat."""

from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, Field


class MessageCreate(BaseModel):
    message: str = Field(..., max_length=2000)
    type: str = "text"
    is_private: bool = False
    target_user_id: Optional[int] = None
    reply_to_id: Optional[int] = None


class MessageEdit(BaseModel):
    message: str = Field(..., max_length=2000)


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class MessageResponse(BaseModel):
    id: int
    session_id: int
    sender_id: Optional[int] = None
    message: Optional[str] = None
    type: str
    is_private: bool
    target_user_id: Optional[int] = None
    reply_to_id: Optional[int] = None
    is_edited: bool
    edited_at: Optional[datetime] = None
    is_deleted: bool
    reactions: Dict[str, List[int]]
    read_by: List[int]
    timestamp: Optional[datetime] = None


class MessageListResponse(BaseModel):
    messages: List[MessageResponse]
    count: int
