"""
Session chat API routes.

Routes:
    POST   /api/v1/chat/sessions/{session_id}/messages           — Send message
    GET    /api/v1/chat/sessions/{session_id}/messages           — History (newest first)
    PATCH  /api/v1/chat/messages/{message_id}                    — Edit own message
    DELETE /api/v1/chat/messages/{message_id}                    — Soft-delete own message
    POST   /api/v1/chat/messages/{message_id}/reactions          — Add reaction
    DELETE /api/v1/chat/messages/{message_id}/reactions/{emoji}  — Remove reaction
    POST   /api/v1/chat/messages/{message_id}/read               — Mark as read
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.user import User
from app.realtime.hub import Broadcaster
from app.schemas.chat import (
    MessageCreate,
    MessageEdit,
    MessageListResponse,
    MessageResponse,
    ReactionRequest,
)
from app.services import chat_service
from app.middleware.rbac import get_current_user, get_broadcaster

router = APIRouter(prefix="/api/v1/chat", tags=["Chat"])


def _response(message) -> MessageResponse:
    return MessageResponse(**chat_service.message_view(message))


# ─── Session messages ─────────────────────────────────────────────────────────

@router.post(
    "/sessions/{session_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send(
    session_id: int,
    body: MessageCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    message = await chat_service.send_message(
        db,
        current_user,
        session_id,
        body.message,
        type=body.type,
        is_private=body.is_private,
        target_user_id=body.target_user_id,
        reply_to_id=body.reply_to_id,
        broadcaster=broadcaster,
    )
    return _response(message)


@router.get("/sessions/{session_id}/messages", response_model=MessageListResponse)
async def history(
    session_id: int,
    limit: Optional[int] = Query(None, ge=1, le=200),
    before: Optional[datetime] = Query(None, description="Only messages older than this timestamp"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    messages = await chat_service.get_history(db, current_user, session_id, limit=limit, before=before)
    return MessageListResponse(messages=[_response(m) for m in messages], count=len(messages))


# ─── Single message ───────────────────────────────────────────────────────────

@router.patch("/messages/{message_id}", response_model=MessageResponse)
async def edit(
    message_id: int,
    body: MessageEdit,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    message = await chat_service.edit_message(db, current_user, message_id, body.message, broadcaster=broadcaster)
    return _response(message)


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete(
    message_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    message = await chat_service.delete_message(db, current_user, message_id, broadcaster=broadcaster)
    return _response(message)


@router.post("/messages/{message_id}/reactions", response_model=MessageResponse)
async def react(
    message_id: int,
    body: ReactionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    message = await chat_service.add_reaction(db, current_user, message_id, body.emoji, broadcaster=broadcaster)
    return _response(message)


@router.delete("/messages/{message_id}/reactions/{emoji}", response_model=MessageResponse)
async def unreact(
    message_id: int,
    emoji: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    message = await chat_service.remove_reaction(db, current_user, message_id, emoji, broadcaster=broadcaster)
    return _response(message)


@router.post("/messages/{message_id}/read", response_model=MessageResponse)
async def read(
    message_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _response(await chat_service.mark_read(db, current_user, message_id))
