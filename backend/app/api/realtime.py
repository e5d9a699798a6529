"""
Session room WebSocket.

Route:
    WS /api/v1/sessions/{session_id}/ws?token=<jwt>

Clients receive every event published to the session room as
``{"type": event, "room": "session-<id>", "data": {...}}`` and may send the
same operations the REST API exposes. Each inbound message runs in its own
database transaction and is answered with ``<type>_ack`` or an error frame.
Events it triggers go out after that transaction commits.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import AsyncSessionLocal
from app.errors import ClassroomError, ValidationFailed
from app.models.user import User
from app.realtime.hub import Broadcaster, NullBroadcaster, PendingBroadcaster, RoomClient, RoomHub
from app.services import chat_service, monitoring_service, poll_service, session_service
from app.services.access import ensure_participant, load_session
from app.services.auth_service import decode_access_token
from app.services.user_service import get_user_by_id
from app.utils import room_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["Realtime"])

Handler = Callable[[AsyncSession, User, int, Dict[str, Any], Broadcaster], Awaitable[Dict[str, Any]]]


# ─── Payload helpers ──────────────────────────────────────────────────────────

def _int(payload: Dict[str, Any], key: str, required: bool = True) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationFailed(fields={key: "is required"})
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(fields={key: "must be an integer"})


def _float(payload: Dict[str, Any], key: str, required: bool = True) -> Optional[float]:
    value = payload.get(key)
    if value is None:
        if required:
            raise ValidationFailed(fields={key: "is required"})
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationFailed(fields={key: "must be a number"})


def _str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ValidationFailed(fields={key: "is required"})
    return value


# ─── Handlers ─────────────────────────────────────────────────────────────────

async def _join(db, user, session_id, payload, broadcaster):
    return await session_service.join_session(db, user, session_id, broadcaster=broadcaster)


async def _leave(db, user, session_id, payload, broadcaster):
    return await session_service.leave_session(db, user, session_id, broadcaster=broadcaster)


async def _session_control(db, user, session_id, payload, broadcaster):
    action = _str(payload, "action")
    session = await session_service.transition(db, user, session_id, action, broadcaster=broadcaster)
    return {"session_id": session.id, "action": action, "status": session.status}


async def _activity(db, user, session_id, payload, broadcaster):
    attendance, alerts = await monitoring_service.record_activity(
        db,
        user,
        session_id,
        _str(payload, "activity_type"),
        payload.get("details"),
        student_id=_int(payload, "student_id", required=False),
        device_info=payload.get("device_info"),
        network_info=payload.get("network_info"),
        broadcaster=broadcaster,
    )
    return {
        "attendance": monitoring_service.attendance_view(attendance),
        "alerts": [monitoring_service.alert_view(a) for a in alerts or []],
        "recognized": alerts is not None,
    }


async def _location(db, user, session_id, payload, broadcaster):
    attendance, alert = await monitoring_service.update_location(
        db,
        user,
        session_id,
        _float(payload, "latitude"),
        _float(payload, "longitude"),
        payload.get("address"),
        _float(payload, "accuracy", required=False),
        broadcaster=broadcaster,
    )
    return {
        "location": attendance.location,
        "alert": monitoring_service.alert_view(alert) if alert is not None else None,
    }


async def _vote(db, user, session_id, payload, broadcaster):
    poll_id = _int(payload, "poll_id")
    poll = await poll_service.load_poll(db, poll_id)
    if poll.session_id != session_id:
        raise ValidationFailed(fields={"poll_id": "belongs to another session"})
    return await poll_service.vote(
        db,
        user,
        poll_id,
        option_index=_int(payload, "option_index", required=False),
        text=payload.get("text"),
        response_time=_float(payload, "response_time", required=False),
        broadcaster=broadcaster,
    )


async def _send_message(db, user, session_id, payload, broadcaster):
    message = await chat_service.send_message(
        db,
        user,
        session_id,
        _str(payload, "message"),
        type=payload.get("message_type") or "text",
        is_private=bool(payload.get("is_private", False)),
        target_user_id=_int(payload, "target_user_id", required=False),
        reply_to_id=_int(payload, "reply_to_id", required=False),
        broadcaster=broadcaster,
    )
    return chat_service.message_view(message)


async def _edit_message(db, user, session_id, payload, broadcaster):
    message = await chat_service.edit_message(
        db, user, _int(payload, "message_id"), _str(payload, "message"), broadcaster=broadcaster
    )
    return chat_service.message_view(message)


async def _delete_message(db, user, session_id, payload, broadcaster):
    message = await chat_service.delete_message(db, user, _int(payload, "message_id"), broadcaster=broadcaster)
    return {"message_id": message.id}


async def _add_reaction(db, user, session_id, payload, broadcaster):
    message = await chat_service.add_reaction(
        db, user, _int(payload, "message_id"), _str(payload, "emoji"), broadcaster=broadcaster
    )
    return {"message_id": message.id, "reactions": message.reaction_summary}


async def _remove_reaction(db, user, session_id, payload, broadcaster):
    message = await chat_service.remove_reaction(
        db, user, _int(payload, "message_id"), _str(payload, "emoji"), broadcaster=broadcaster
    )
    return {"message_id": message.id, "reactions": message.reaction_summary}


async def _mark_read(db, user, session_id, payload, broadcaster):
    message = await chat_service.mark_read(db, user, _int(payload, "message_id"))
    return {"message_id": message.id, "read_by": [r.user_id for r in message.read_receipts]}


HANDLERS: Dict[str, Handler] = {
    "join_session": _join,
    "leave_session": _leave,
    "session_control": _session_control,
    "student_activity": _activity,
    "location_update": _location,
    "poll_vote": _vote,
    "send_message": _send_message,
    "edit_message": _edit_message,
    "delete_message": _delete_message,
    "add_reaction": _add_reaction,
    "remove_reaction": _remove_reaction,
    "mark_read": _mark_read,
}


# ─── Dispatch ─────────────────────────────────────────────────────────────────

async def dispatch(
    client: RoomClient,
    session_id: int,
    payload: Any,
    broadcaster: Broadcaster,
    session_factory=AsyncSessionLocal,
) -> Dict[str, Any]:
    """Run one inbound message and return the reply frame for the sender."""
    if not isinstance(payload, dict):
        return {"type": "error", "error": "validation_failed", "detail": "Message must be a JSON object"}

    message_type = str(payload.get("type") or "").strip().lower()
    if message_type == "ping":
        return {"type": "pong"}

    handler = HANDLERS.get(message_type)
    if handler is None:
        return {"type": "error", "error": "validation_failed", "detail": "Unsupported message type"}

    pending = PendingBroadcaster(broadcaster)
    async with session_factory() as db:
        try:
            data = await handler(db, client.user, session_id, payload, pending)
            await db.commit()
        except ClassroomError as exc:
            await db.rollback()
            frame = {"type": "error", "error": exc.code, "detail": exc.message}
            if exc.fields:
                frame["fields"] = exc.fields
            return frame
        except Exception:
            await db.rollback()
            logger.error("WebSocket '%s' from user %s failed", message_type, client.user_id, exc_info=True)
            return {"type": "error", "error": "internal_error", "detail": "Unable to process message"}

    await pending.flush()
    return {"type": f"{message_type}_ack", "data": data}


async def _resolve_ws_user(token: str) -> Optional[User]:
    try:
        user_id = int(decode_access_token(token).get("sub"))
    except (JWTError, TypeError, ValueError):
        return None

    async with AsyncSessionLocal() as db:
        user = await get_user_by_id(db, user_id)
    if user is None or not user.is_active:
        return None
    return user


@router.websocket("/{session_id}/ws")
async def session_socket(websocket: WebSocket, session_id: int):
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401, reason="Authentication required")
        return

    current_user = await _resolve_ws_user(token)
    if current_user is None:
        await websocket.close(code=4401, reason="Invalid or expired token")
        return

    async with AsyncSessionLocal() as db:
        try:
            session = await load_session(db, session_id)
        except ClassroomError:
            await websocket.close(code=4404, reason="Session not found")
            return
        try:
            ensure_participant(session, current_user)
        except ClassroomError as exc:
            await websocket.close(code=4403, reason=exc.message)
            return

    hub: RoomHub = websocket.app.state.hub
    broadcaster: Broadcaster = getattr(websocket.app.state, "broadcaster", None) or NullBroadcaster()
    room = room_key(session_id)

    await websocket.accept()
    client = RoomClient(websocket, current_user)
    await hub.add(room, client)
    logger.info("User %s connected to %s", current_user.id, room)

    try:
        await client.send_json(
            {"type": "connected", "session_id": session_id, "role": current_user.role.value}
        )
        while True:
            try:
                payload = await websocket.receive_json()
            except ValueError:
                await client.send_json({"type": "error", "error": "validation_failed", "detail": "Invalid JSON payload"})
                continue

            await client.send_json(await dispatch(client, session_id, payload, broadcaster))
    except WebSocketDisconnect:
        logger.info("User %s disconnected from %s", current_user.id, room)
    finally:
        await hub.remove(room, websocket)
