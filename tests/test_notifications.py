import json

import httpx

from storefront import config, notifications
from storefront.db import AsyncSessionLocal
from storefront.models import User
from storefront.notifications import send_notification, telegram_bot_info, telegram_send_message, IN_APP, TELEGRAM
from storefront.realtime import manager
from storefront.seed_db import CATALOG_FILE, seed_catalog, seed_extras
from storefront.templates import DEFAULT_MESSAGES
from storefront.vip import SEED_PLANS

from conftest import RecordingSocket


async def test_telegram_disabled_without_token(monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "")
    assert await telegram_send_message("1001", "Hallo") == {"ok": False, "error": "telegram disabled"}


async def test_telegram_send_message(monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:abc")
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 7}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await telegram_send_message("1001", "*Hi*", parse_mode="Markdown", client=client)
    assert result["ok"] is True
    assert seen == [("/bot123:abc/sendMessage", {"chat_id": "1001", "text": "*Hi*", "parse_mode": "Markdown"})]


async def test_send_notification_reports_each_channel(monkeypatch):
    async def failing_send(chat_id, text, parse_mode=None, client=None):
        raise httpx.ConnectError("telegram unreachable")

    monkeypatch.setattr(notifications, "telegram_send_message", failing_send)
    user = User(id="u-42", telegram_id="4242", full_name="Max")
    sock = RecordingSocket()
    manager.join(sock, "user_u-42")
    try:
        result = await send_notification(user, "Bestellung", "Ist unterwegs", channels=[IN_APP, TELEGRAM],
                                         data={"request_id": "r1"})
    finally:
        manager.disconnect(sock)

    assert result == {IN_APP: True, TELEGRAM: False}
    [note] = sock.events("notification:new")
    assert note["title"] == "Bestellung"
    assert note["request_id"] == "r1"


async def test_telegram_channel_skipped_without_chat_id():
    user = User(id="u-43", telegram_id=None)
    assert await send_notification(user, "x", "y", channels=[TELEGRAM]) == {}


async def test_seed_is_idempotent(fresh_db):
    with open(CATALOG_FILE, "r", encoding="utf-8") as f:
        catalog = json.load(f)

    async with AsyncSessionLocal() as db:
        first = await seed_catalog(db, catalog)
        await seed_extras(db)
    assert first["products_created"] == len(catalog["products"])
    assert first["products_updated"] == 0

    async with AsyncSessionLocal() as db:
        second = await seed_catalog(db, catalog)
        await seed_extras(db)
    assert second["products_created"] == 0
    assert second["products_updated"] == len(catalog["products"])
    assert second["departments"] == len(catalog["departments"])


async def test_seeded_plans_and_templates_are_served(client, admin_headers):
    async with AsyncSessionLocal() as db:
        await seed_extras(db)

    r = await client.get("/api/vip-plans")
    assert [p["id"] for p in r.json()] == [p["id"] for p in sorted(SEED_PLANS, key=lambda p: p["price"])]

    r = await client.get("/api/notification-templates/order-shipped", headers=admin_headers)
    assert r.json()["message_template"] == DEFAULT_MESSAGES["shipped"]


async def test_telegram_bot_info(monkeypatch):
    assert (await telegram_bot_info())["status"] == "offline"

    monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:abc")

    def handler(request):
        if request.url.path.endswith("/getMe"):
            return httpx.Response(200, json={"ok": True, "result": {"id": 123, "username": "nebula_bot"}})
        return httpx.Response(200, json={"ok": True, "result": {"url": "https://shop.example.com/hook"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        info = await telegram_bot_info(client=client)
    assert info == {"status": "online", "botName": "nebula_bot", "botId": 123,
                    "webhookUrl": "https://shop.example.com/hook"}

    def down(request):
        raise httpx.ConnectError("unreachable", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(down)) as client:
        assert (await telegram_bot_info(client=client))["status"] == "offline"
