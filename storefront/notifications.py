# storefront/notifications.py
import logging
from typing import Iterable, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront import config
from storefront.models import User, utcnow
from storefront.realtime import notify_user, notify_role

logger = logging.getLogger(__name__)

IN_APP = "in_app"
TELEGRAM = "telegram"

TELE_API = "https://api.telegram.org/bot{token}"


# ---------- telegram ----------
async def telegram_api(method: str, payload: Optional[dict] = None,
                       client: Optional[httpx.AsyncClient] = None) -> dict:
    if not config.TELEGRAM_BOT_TOKEN:
        return {"ok": False, "error": "telegram disabled"}
    url = TELE_API.format(token=config.TELEGRAM_BOT_TOKEN) + f"/{method}"

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=15)
    try:
        r = await client.post(url, json=payload or {})
        logger.info("[TELEGRAM] %s: %s", method, r.status_code)
        r.raise_for_status()
        return r.json()
    finally:
        if owns_client:
            await client.aclose()


async def telegram_send_message(chat_id: str, text: str, parse_mode: Optional[str] = None,
                                client: Optional[httpx.AsyncClient] = None) -> dict:
    if not config.TELEGRAM_BOT_TOKEN:
        logger.info("[TELEGRAM] bot token not set, skipping message to %s", chat_id)
        return {"ok": False, "error": "telegram disabled"}
    payload = {"chat_id": chat_id, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode
    return await telegram_api("sendMessage", payload, client=client)


async def telegram_bot_info(client: Optional[httpx.AsyncClient] = None) -> dict:
    """Bot identity and webhook url; ``status`` is "offline" whenever the bot can't be reached."""
    info = {"status": "offline", "botName": None, "botId": None, "webhookUrl": None}
    if not config.TELEGRAM_BOT_TOKEN:
        return info
    try:
        me = await telegram_api("getMe", client=client)
        bot = me.get("result") or {}
        info.update(status="online" if me.get("ok") else "offline", botName=bot.get("username"), botId=bot.get("id"))
        hook = await telegram_api("getWebhookInfo", client=client)
        info["webhookUrl"] = (hook.get("result") or {}).get("url") or None
    except httpx.HTTPError as e:
        logger.warning("[TELEGRAM] bot info unavailable: %s", e)
    return info


# ---------- fan-out ----------
async def send_notification(user: User, title: str, message: str,
                            channels: Iterable[str] = (IN_APP,), data: Optional[dict] = None) -> dict:
    """Deliver a notification over each requested channel.

    Returns ``{channel: bool}``. Channel failures are logged and never raised.
    """
    channels = set(channels)
    results = {}

    if IN_APP in channels:
        await notify_user(user.id, "notification:new", {
            "title": title,
            "message": message,
            "timestamp": utcnow().isoformat(),
            **(data or {}),
        })
        results[IN_APP] = True

    if TELEGRAM in channels and user.telegram_id:
        try:
            resp = await telegram_send_message(user.telegram_id, f"*{title}*\n\n{message}", parse_mode="Markdown")
            results[TELEGRAM] = bool(resp.get("ok"))
        except httpx.HTTPError as e:
            logger.error("[TELEGRAM] notification to %s failed: %s", user.id, e)
            results[TELEGRAM] = False

    return results


async def notify_admins_new_request(db: AsyncSession, request_row) -> None:
    """Tell the back office a new request came in: socket push plus telegram to admins that linked one."""
    contact = request_row.contact_info or {}
    summary = {
        "id": request_row.id,
        "total_sum": float(request_row.total_sum or 0),
        "customer": contact.get("name"),
        "item_count": len(request_row.items),
    }
    await notify_role("admin", "admin:new_request", summary)

    if not config.TELEGRAM_BOT_TOKEN:
        return
    r = await db.execute(select(User).where(User.role == "admin", User.telegram_id.is_not(None)))
    text = (
        f"🛒 Neue Anfrage #{request_row.id[:8]}\n"
        f"Kunde: {contact.get('name') or 'Unbekannt'} ({contact.get('telegram') or '-'})\n"
        f"Summe: {float(request_row.total_sum or 0):.2f} €"
    )
    for admin in r.scalars().all():
        try:
            await telegram_send_message(admin.telegram_id, text)
        except httpx.HTTPError as e:
            logger.error("[TELEGRAM] admin notification to %s failed: %s", admin.id, e)
