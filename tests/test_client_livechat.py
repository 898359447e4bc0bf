import asyncio

import httpx
import pytest

from storefront.client.api import AdminApi, ApiClient
from storefront.client.livechat import AdminChatInbox, INBOX_EVENTS
from storefront.client.storage import LocalStorage

SESSIONS = [
    {"id": "s-old", "updated_at": "2024-05-01T10:00:00", "_count": {"messages": 0}, "messages": []},
    {"id": "s-new", "updated_at": "2024-05-02T10:00:00", "_count": {"messages": 2}, "messages": []},
]
HISTORY = [
    {"id": "m1", "session_id": "s-old", "sender": "user", "content": "Hallo"},
    {"id": "m2", "session_id": "s-old", "sender": "admin", "content": "Hi!"},
]


def handler(request):
    if request.url.path == "/api/admin/chats":
        return httpx.Response(200, json=[dict(s) for s in SESSIONS])
    if request.url.path == "/api/admin/chats/s-old/messages":
        return httpx.Response(200, json=list(HISTORY))
    return httpx.Response(404, json={"message": "Chat session not found"})


@pytest.fixture
def emitted():
    return []


@pytest.fixture
def inbox(emitted):
    async def emit(event, data):
        emitted.append((event, data))

    client = ApiClient("http://shop.test/api", storage=LocalStorage(path=None),
                       transport=httpx.MockTransport(handler))
    box = AdminChatInbox(AdminApi(client), emit=emit, typing_timeout=0.05)
    yield box
    box.close()


async def test_load_and_select(inbox, emitted):
    await inbox.load_sessions()
    assert [s["id"] for s in inbox.sessions] == ["s-new", "s-old"]

    await inbox.select("s-new")
    assert inbox.selected["_count"] == {"messages": 0}
    assert emitted == [("admin:join_session", "s-new")]
    assert inbox.messages == []

    await inbox.select("s-old")
    assert [m["id"] for m in inbox.messages] == ["m1", "m2"]


async def test_send_requires_selection_and_content(inbox, emitted):
    assert await inbox.send("Hallo") is False
    await inbox.load_sessions()
    await inbox.select("s-old")
    emitted.clear()

    assert await inbox.send("   ") is False
    assert await inbox.send(" Ist unterwegs ") is True
    assert emitted == [("chat:message", {"content": "Ist unterwegs", "sessionId": "s-old"})]


async def test_new_session_and_received_message(inbox):
    await inbox.load_sessions()
    assert inbox.dispatch("admin:new_session", {"id": "s-3", "updated_at": "2024-04-01T00:00:00"})
    assert not inbox.dispatch("admin:new_session", {"id": "s-3"})
    assert inbox.sessions[-1]["id"] == "s-3"

    message = {"id": "m9", "session_id": "s-3", "sender": "user", "content": "Hallo?",
               "created_at": "2024-06-01T00:00:00"}
    assert inbox.dispatch("admin:message_received", {"sessionId": "s-3", "message": message})
    top = inbox.sessions[0]
    assert top["id"] == "s-3"
    assert top["messages"] == [message]
    assert top["_count"] == {"messages": 1}

    assert not inbox.dispatch("admin:message_received", {"sessionId": "unknown", "message": message})


async def test_selected_session_stays_read(inbox):
    await inbox.load_sessions()
    await inbox.select("s-old")
    message = {"id": "m3", "session_id": "s-old", "sender": "user", "content": "Noch da?",
               "created_at": "2024-06-01T00:00:00"}
    inbox.dispatch("admin:message_received", {"sessionId": "s-old", "message": message})
    assert inbox.selected["_count"] == {"messages": 0}

    assert inbox.dispatch("chat:message", message)
    assert not inbox.dispatch("chat:message", message)
    assert [m["id"] for m in inbox.messages] == ["m1", "m2", "m3"]

    other = dict(message, id="m4", session_id="s-new")
    assert not inbox.dispatch("chat:message", other)


async def test_typing_indicator_expires(inbox):
    assert inbox.dispatch("typing", {"sessionId": "s-old", "sender": "user", "is_typing": True})
    assert inbox.typing("s-old")
    await asyncio.sleep(0.1)
    assert not inbox.typing("s-old")


async def test_typing_cleared_by_user_message_or_stop(inbox):
    await inbox.load_sessions()
    await inbox.select("s-old")

    inbox.dispatch("typing", {"sessionId": "s-old", "sender": "user"})
    inbox.dispatch("chat:message", {"id": "m5", "session_id": "s-old", "sender": "user", "content": "x"})
    assert not inbox.typing("s-old")

    inbox.dispatch("typing", {"sessionId": "s-new", "sender": "user"})
    inbox.dispatch("typing", {"sessionId": "s-new", "sender": "user", "is_typing": False})
    assert not inbox.typing("s-new")

    assert not inbox.dispatch("typing", {"sessionId": "s-old", "sender": "admin"})
    assert not inbox.dispatch("unknown", {})


def test_inbox_listens_to_four_events(inbox):
    assert set(INBOX_EVENTS) == {"chat:message", "typing", "admin:new_session", "admin:message_received"}
    assert not inbox.dispatch("chat:message", "not a dict")


async def test_message_without_timestamp_moves_session_to_top(inbox):
    await inbox.load_sessions()
    inbox.dispatch("admin:message_received", {"sessionId": "s-old", "message": {"id": "m7", "content": "?"}})
    top = inbox.sessions[0]
    assert top["id"] == "s-old"
    assert "+" not in top["updated_at"]
    assert top["updated_at"] > "2024-05-02T10:00:00"
