# storefront/client/livechat.py
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from storefront.client.api import AdminApi, ApiError
from storefront.client.labels import utc_timestamp

logger = logging.getLogger(__name__)

Emitter = Callable[[str, Any], Awaitable[None]]

INBOX_EVENTS = ("chat:message", "typing", "admin:new_session", "admin:message_received")


def _unread(session: dict) -> int:
    return (session.get("_count") or {}).get("messages") or 0


class AdminChatInbox:
    """Admin side of the live support chat.

    Holds the session list (most recent first) and the message log of the
    selected session; socket frames are fed in through ``dispatch``.
    """

    def __init__(self, admin: AdminApi, emit: Optional[Emitter] = None, typing_timeout: float = 3.0):
        self.admin = admin
        self.emit = emit
        self.typing_timeout = typing_timeout
        self.sessions: List[dict] = []
        self.messages: List[dict] = []
        self.selected_id: Optional[str] = None
        self._typing: Dict[str, asyncio.TimerHandle] = {}

    def _sort(self):
        self.sessions.sort(key=lambda s: s.get("updated_at") or "", reverse=True)

    def _find(self, session_id: str) -> Optional[dict]:
        return next((s for s in self.sessions if s["id"] == session_id), None)

    @property
    def selected(self) -> Optional[dict]:
        return self._find(self.selected_id) if self.selected_id else None

    async def load_sessions(self) -> List[dict]:
        try:
            self.sessions = await self.admin.get_chat_sessions()
        except ApiError as e:
            logger.error("[CHAT] loading sessions failed (%s): %s", e.status, e.message)
            return self.sessions
        self._sort()
        return self.sessions

    async def select(self, session_id: str):
        self.selected_id = session_id
        session = self._find(session_id)
        if session:
            session["_count"] = {"messages": 0}
        if self.emit:
            await self.emit("admin:join_session", session_id)
        try:
            self.messages = await self.admin.get_chat_history(session_id)
        except ApiError as e:
            logger.error("[CHAT] loading history for %s failed: %s", session_id, e.message)
            self.messages = []

    async def send(self, content: str) -> bool:
        content = (content or "").strip()
        if not content or not self.selected_id or not self.emit:
            return False
        await self.emit("chat:message", {"content": content, "sessionId": self.selected_id})
        return True

    # ---------- inbound socket events ----------
    def dispatch(self, event: str, data) -> bool:
        handler = {
            "chat:message": self._on_chat_message,
            "typing": self._on_typing,
            "admin:new_session": self._on_new_session,
            "admin:message_received": self._on_message_received,
        }.get(event)
        if handler is None or not isinstance(data, dict):
            return False
        return handler(data)

    def _on_new_session(self, session: dict) -> bool:
        if not session.get("id") or self._find(session["id"]):
            return False
        self.sessions.append(session)
        self._sort()
        return True

    def _on_message_received(self, data: dict) -> bool:
        session = self._find(data.get("sessionId"))
        if session is None:
            return False
        message = data.get("message") or {}
        session["messages"] = [message]
        session["updated_at"] = message.get("created_at") or utc_timestamp()
        if session["id"] != self.selected_id:
            session["_count"] = {"messages": _unread(session) + 1}
        self._sort()
        return True

    def _on_chat_message(self, message: dict) -> bool:
        if message.get("session_id") != self.selected_id:
            return False
        if any(m.get("id") == message.get("id") for m in self.messages):
            return False
        self.messages.append(message)
        if message.get("sender") == "user":
            self._clear_typing(message["session_id"])
        return True

    # ---------- typing indicator ----------
    def _on_typing(self, data: dict) -> bool:
        session_id = data.get("sessionId")
        if not session_id or data.get("sender") == "admin":
            return False
        if data.get("is_typing", True):
            self._set_typing(session_id)
        else:
            self._clear_typing(session_id)
        return True

    def _set_typing(self, session_id: str):
        handle = self._typing.pop(session_id, None)
        if handle:
            handle.cancel()
        loop = asyncio.get_running_loop()
        self._typing[session_id] = loop.call_later(self.typing_timeout, self._typing.pop, session_id, None)

    def _clear_typing(self, session_id: str):
        handle = self._typing.pop(session_id, None)
        if handle:
            handle.cancel()

    def typing(self, session_id: str) -> bool:
        return session_id in self._typing

    def close(self):
        for handle in self._typing.values():
            handle.cancel()
        self._typing.clear()
