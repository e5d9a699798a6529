"""Pydantic schemas for polls."""

from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field


class PollCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=500)
    type: str = Field("single_choice", pattern="^(single_choice|multiple_choice|text_response|rating|yes_no)$")
    options: List[str] = Field(default_factory=list)
    allow_change_vote: bool = False
    show_results: str = Field("after_vote", pattern="^(never|after_vote|after_close|real_time)$")
    require_login: bool = True
    time_limit: Optional[int] = Field(None, ge=1)
    max_responses: Optional[int] = Field(None, ge=1)
    is_anonymous: bool = False
    expires_in: Optional[int] = Field(None, description="Minutes until the poll stops accepting votes")


class VoteRequest(BaseModel):
    option_index: Optional[int] = None
    text: Optional[str] = Field(None, max_length=2000)
    response_time: Optional[float] = Field(None, ge=0)


class PollOptionResult(BaseModel):
    text: str
    votes: int


class PollResults(BaseModel):
    poll_id: int
    options: List[PollOptionResult]
    total_votes: int
    total_responses: int


class VoteResponse(BaseModel):
    poll_id: int
    revote: bool
    results: Optional[PollResults] = None


class PollListResponse(BaseModel):
    polls: List[Dict[str, Any]]
    total: int
    page: int
    per_page: int


class PollClosedResponse(BaseModel):
    id: int
    is_active: bool
    closed_at: Optional[datetime] = None
    results: PollResults
