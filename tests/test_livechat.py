import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from storefront.app import app
from storefront.auth import token_for
from storefront.livechat import WS_UNAUTHORIZED

from conftest import auth_headers, make_user


@pytest.fixture
def chat_users(fresh_db):
    async def create():
        customer = await make_user(email="kunde@example.com", username="kunde", full_name="Kim Kunde",
                                   password="geheim123", role="user")
        admin = await make_user(email="support@example.com", username="support", full_name="Support",
                                password="adminpass", role="admin")
        return customer, admin

    return asyncio.run(create())


def _connect(tc, user):
    return tc.websocket_connect(f"/ws?token={token_for(user)}")


def test_rejects_missing_or_bad_token(chat_users):
    with TestClient(app) as tc:
        for url in ("/ws", "/ws?token=garbage"):
            with pytest.raises(WebSocketDisconnect) as exc:
                with tc.websocket_connect(url) as ws:
                    ws.receive_json()
            assert exc.value.code == WS_UNAUTHORIZED


def test_customer_and_admin_conversation(chat_users):
    customer, admin = chat_users
    with TestClient(app) as tc:
        with _connect(tc, admin) as admin_ws, _connect(tc, customer) as user_ws:
            assert admin_ws.receive_json()["event"] == "connected"
            assert user_ws.receive_json() == {"event": "connected", "data": {"user_id": customer.id, "role": "user"}}

            user_ws.send_json({"event": "chat:message", "data": {"content": "  Hallo, wo ist mein Paket?  "}})
            echoed = user_ws.receive_json()
            assert echoed["event"] == "chat:message"
            assert echoed["data"]["content"] == "Hallo, wo ist mein Paket?"
            assert echoed["data"]["sender"] == "user"

            new_session = admin_ws.receive_json()
            assert new_session["event"] == "admin:new_session"
            session_id = new_session["data"]["id"]
            assert new_session["data"]["user"]["full_name"] == "Kim Kunde"
            assert new_session["data"]["_count"] == {"messages": 1}

            received = admin_ws.receive_json()
            assert received["event"] == "admin:message_received"
            assert received["data"]["sessionId"] == session_id

            admin_ws.send_json({"event": "admin:join_session", "data": {"sessionId": session_id}})
            assert admin_ws.receive_json() == {"event": "admin:session_joined", "data": {"sessionId": session_id}}

            user_ws.send_json({"event": "typing", "data": {"is_typing": True}})
            typing = admin_ws.receive_json()
            assert typing["event"] == "typing"
            assert typing["data"]["sender"] == "user"

            admin_ws.send_json({"event": "chat:message", "data": {"content": "Ist unterwegs!", "sessionId": session_id}})
            reply = user_ws.receive_json()
            assert reply["event"] == "chat:message"
            assert reply["data"]["sender"] == "admin"
            assert reply["data"]["content"] == "Ist unterwegs!"
            assert admin_ws.receive_json()["data"]["id"] == reply["data"]["id"]

            # a second customer message lands in the same open session
            user_ws.send_json({"event": "chat:message", "data": "Danke!"})
            user_ws.receive_json()
            follow_up = admin_ws.receive_json()
            assert follow_up["event"] == "chat:message"
            assert follow_up["data"]["session_id"] == session_id
            assert admin_ws.receive_json()["event"] == "admin:message_received"

        r = tc.get("/api/admin/chats", headers=auth_headers(admin))
        [listed] = r.json()
        assert listed["id"] == session_id
        assert listed["messages"][0]["content"] == "Danke!"
        assert listed["_count"] == {"messages": 1}

        r = tc.get(f"/api/admin/chats/{session_id}/messages", headers=auth_headers(admin))
        assert [m["sender"] for m in r.json()] == ["user", "admin", "user"]

        r = tc.get("/api/admin/chats", headers=auth_headers(customer))
        assert r.status_code == 403


def test_socket_errors_and_ping(chat_users):
    customer, _ = chat_users
    with TestClient(app) as tc:
        with _connect(tc, customer) as ws:
            ws.receive_json()

            ws.send_json({"event": "ping", "data": 42})
            assert ws.receive_json() == {"event": "pong", "data": 42}

            ws.send_text("not json")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Invalid frame"}}

            ws.send_json({"event": "bogus"})
            assert ws.receive_json() == {"event": "error", "data": {"event": "bogus", "message": "Unknown event: bogus"}}

            ws.send_json({"event": "chat:message", "data": {"content": "   "}})
            assert ws.receive_json()["data"]["message"] == "Message content is required"

            ws.send_json({"event": "admin:join_session", "data": {"sessionId": "x"}})
            assert ws.receive_json()["data"]["message"] == "Admin access required"


def test_admin_reply_to_unknown_session(chat_users):
    _, admin = chat_users
    with TestClient(app) as tc:
        with _connect(tc, admin) as ws:
            ws.receive_json()
            ws.send_json({"event": "chat:message", "data": {"content": "Hallo", "sessionId": "missing"}})
            assert ws.receive_json()["data"] == {"event": "chat:message", "message": "Chat session not found"}
