"""Session-room fan-out of state-change events to connected WebSocket clients."""

import asyncio
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Protocol, Set, Tuple

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from app.config import settings
from app.models.user import User

logger = logging.getLogger(__name__)


class RoomClient:
    def __init__(self, websocket: WebSocket, user: User):
        self.websocket = websocket
        self.user = user
        self.user_id = int(user.id)
        self.role = user.role

    async def send_json(self, payload: Dict[str, Any]) -> None:
        await self.websocket.send_json(jsonable_encoder(payload))


class RoomHub:
    """In-process registry of clients per room key."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._clients: Dict[str, List[RoomClient]] = {}

    async def add(self, room: str, client: RoomClient) -> None:
        async with self._lock:
            self._clients.setdefault(room, []).append(client)

    async def remove(self, room: str, websocket: Any) -> None:
        async with self._lock:
            clients = self._clients.get(room, [])
            self._clients[room] = [client for client in clients if client.websocket is not websocket]
            if not self._clients[room]:
                self._clients.pop(room, None)

    async def list(self, room: str) -> List[RoomClient]:
        async with self._lock:
            return list(self._clients.get(room, []))

    async def count(self, room: str) -> int:
        async with self._lock:
            return len(self._clients.get(room, []))


class Broadcaster(Protocol):
    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        ...

    async def publish_to(self, room: str, user_ids: Iterable[int], event: str, payload: Dict[str, Any]) -> None:
        ...


class HubBroadcaster:
    """Fire-and-forget delivery to the clients of a room.

    Clients are sent to concurrently. A client whose send fails or times out
    is dropped from the hub. Nothing is raised to the caller: the state change
    that triggered the event has already been persisted.
    """

    def __init__(self, hub: RoomHub, send_timeout: Optional[float] = None):
        self.hub = hub
        self.send_timeout = send_timeout if send_timeout is not None else settings.WS_SEND_TIMEOUT_SECONDS

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        await self._fan_out(room, None, event, payload)

    async def publish_to(self, room: str, user_ids: Iterable[int], event: str, payload: Dict[str, Any]) -> None:
        await self._fan_out(room, set(user_ids), event, payload)

    async def _send(self, room: str, client: RoomClient, event: str, frame: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(client.send_json(frame), timeout=self.send_timeout)
        except Exception:
            logger.warning("Dropping client %s from %s after failed '%s' send", client.user_id, room, event)
            await self.hub.remove(room, client.websocket)

    async def _fan_out(
        self, room: str, user_ids: Optional[Set[int]], event: str, payload: Dict[str, Any]
    ) -> None:
        try:
            clients = await self.hub.list(room)
            if user_ids is not None:
                clients = [client for client in clients if client.user_id in user_ids]
            if not clients:
                return
            frame = {"type": event, "room": room, "data": payload}
            await asyncio.gather(*(self._send(room, client, event, frame) for client in clients))
        except Exception:
            logger.error("Broadcast of '%s' to %s failed", event, room, exc_info=True)


class NullBroadcaster:
    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        return None

    async def publish_to(self, room: str, user_ids: Iterable[int], event: str, payload: Dict[str, Any]) -> None:
        return None


class RecordingBroadcaster:
    """Keeps every published event; used by tests and local scripts.

    ``audiences`` runs parallel to ``events``: ``None`` for a room-wide event,
    otherwise the user ids a targeted event was addressed to.
    """

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []
        self.audiences: List[Optional[FrozenSet[int]]] = []

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((room, event, payload))
        self.audiences.append(None)

    async def publish_to(self, room: str, user_ids: Iterable[int], event: str, payload: Dict[str, Any]) -> None:
        self.events.append((room, event, payload))
        self.audiences.append(frozenset(user_ids))

    def names(self) -> List[str]:
        return [event for _, event, _ in self.events]

    def received_by(self, user_id: int) -> List[str]:
        """Event names a client of ``user_id`` in the room would have seen."""
        return [
            event
            for (_, event, _), audience in zip(self.events, self.audiences)
            if audience is None or user_id in audience
        ]

    def last(self, event: str) -> Optional[Dict[str, Any]]:
        for _, name, payload in reversed(self.events):
            if name == event:
                return payload
        return None


class PendingBroadcaster:
    """Holds events back until the unit of work that produced them commits.

    Services publish while their transaction is still open; the caller calls
    ``flush`` after the commit, or drops the instance when it rolls back.
    """

    def __init__(self, target: Broadcaster):
        self.target = target
        self._pending: List[Tuple[str, Optional[FrozenSet[int]], str, Dict[str, Any]]] = []

    async def publish(self, room: str, event: str, payload: Dict[str, Any]) -> None:
        self._pending.append((room, None, event, payload))

    async def publish_to(self, room: str, user_ids: Iterable[int], event: str, payload: Dict[str, Any]) -> None:
        self._pending.append((room, frozenset(user_ids), event, payload))

    def __len__(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        pending, self._pending = self._pending, []
        for room, user_ids, event, payload in pending:
            if user_ids is None:
                await self.target.publish(room, event, payload)
            else:
                await self.target.publish_to(room, user_ids, event, payload)
