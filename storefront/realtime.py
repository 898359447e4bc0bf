# storefront/realtime.py
"""Websocket fan-out shared by live chat, cart pushes and in-app notifications.

Every socket joins ``user_<id>`` and ``role_<role>`` on connect; live chat
adds ``session_<id>`` rooms on demand. Frames are JSON objects of the form
``{"event": str, "data": any}``.
"""
import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.memberships: Dict[WebSocket, Set[str]] = defaultdict(set)

    def join(self, ws: WebSocket, room: str):
        self.rooms[room].add(ws)
        self.memberships[ws].add(room)

    def leave(self, ws: WebSocket, room: str):
        self.rooms.get(room, set()).discard(ws)
        self.memberships.get(ws, set()).discard(room)
        if room in self.rooms and not self.rooms[room]:
            del self.rooms[room]

    def disconnect(self, ws: WebSocket):
        for room in list(self.memberships.pop(ws, ())):
            members = self.rooms.get(room)
            if members is not None:
                members.discard(ws)
                if not members:
                    del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit(self, room: str, event: str, data: Any = None, skip: Optional[WebSocket] = None) -> int:
        """Send ``event`` to every socket in ``room``. Returns the number of sockets reached."""
        frame = {"event": event, "data": data}
        sent = 0
        for ws in list(self.rooms.get(room, ())):
            if ws is skip:
                continue
            if ws.application_state != WebSocketState.CONNECTED:
                self.disconnect(ws)
                continue
            try:
                await ws.send_json(frame)
                sent += 1
            except (RuntimeError, ConnectionError) as e:
                logger.warning("[WS] dropping socket in %s: %s", room, e)
                self.disconnect(ws)
        if sent:
            logger.debug("[WS] emitted %s to %s (%d)", event, room, sent)
        return sent

    async def send(self, ws: WebSocket, event: str, data: Any = None):
        await ws.send_json({"event": event, "data": data})


manager = ConnectionManager()


async def notify_user(user_id: str, event: str, data: Any = None) -> int:
    return await manager.emit(f"user_{user_id}", event, data)


async def notify_role(role: str, event: str, data: Any = None) -> int:
    return await manager.emit(f"role_{role}", event, data)


async def publish_table_change(table: str, kind: str, new: Optional[dict] = None, old: Optional[dict] = None,
                               notify_owner: bool = True):
    """Push a row change to the owning user and to admins.

    Pass ``notify_owner=False`` when the owner already got a dedicated event for the change.

    The payload mirrors a database change feed: ``{"type", "table", "new", "old"}``.
    """
    payload = {"type": kind, "table": table, "new": new, "old": old}
    owner = (new or {}).get("user_id") or (old or {}).get("user_id")
    if owner and notify_owner:
        await notify_user(owner, f"table:{table}", payload)
    await notify_role("admin", f"table:{table}", payload)
