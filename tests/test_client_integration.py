from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from storefront.app import app
from storefront.auth import token_for
from storefront.client.api import AdminApi, ApiClient, ApiError, StorefrontApi
from storefront.client.cart import CartStore
from storefront.client.dashboard import Dashboard
from storefront.client.livechat import AdminChatInbox
from storefront.client.storage import LocalStorage, TOKEN_KEY
from storefront.db import AsyncSessionLocal
from storefront.models import ChatMessage, ChatSession, utcnow

from conftest import make_cart_item, make_product

CONTACT = {"name": "Max", "telegram": "@max"}


@pytest_asyncio.fixture
async def connect(fresh_db):
    """Builds ApiClients that talk to the app in-process, optionally signed in as ``user``."""
    clients = []

    def _connect(user=None) -> ApiClient:
        storage = LocalStorage(path=None)
        if user is not None:
            storage.set_item(TOKEN_KEY, token_for(user))
        c = ApiClient("http://test/api", storage=storage, transport=httpx.ASGITransport(app=app))
        clients.append(c)
        return c

    yield _connect
    for c in clients:
        await c.aclose()


async def _order(customer, product, quantity=1) -> str:
    item = await make_cart_item(customer.id, product.id, quantity=quantity)
    async with ApiClient("http://test/api", storage=LocalStorage(path=None),
                         transport=httpx.ASGITransport(app=app)) as c:
        c.set_token(token_for(customer))
        order = await c.post("/requests", {"contact_info": CONTACT, "cart_items": [{"id": item.id}]})
    return order["id"]


async def test_login_and_error_mapping(connect, customer):
    api = StorefrontApi(connect())
    result = await api.auth.login(email="max@example.com", password="geheim123")
    assert result["user"]["id"] == customer.id
    assert api.auth.is_authenticated

    with pytest.raises(ApiError) as err:
        await api.product.get("missing")
    assert err.value.status == 404
    assert err.value.message == "Product not found"

    anonymous = StorefrontApi(connect())
    with pytest.raises(ApiError) as err:
        await anonymous.auth.login(email="max@example.com", password="falsch")
    assert err.value.status == 401
    assert err.value.message == "Invalid credentials"
    assert not anonymous.auth.is_authenticated


async def test_cart_store_against_server(connect, customer):
    sneaker = await make_product(sku="SNK", price=Decimal("100.00"))
    hoodie = await make_product(sku="HOOD", name="Hoodie", price=Decimal("59.90"))
    toasts = []
    store = CartStore(connect(customer), notify=lambda *t: toasts.append(t), user={"id": customer.id})

    await store.add(sneaker.id, 2)
    await store.add(sneaker.id, 1)
    await store.add(hoodie.id)
    quantities = {i["product_id"]: i["quantity"] for i in store.items}
    assert quantities == {sneaker.id: 3, hoodie.id: 1}
    assert store.total_items == 4
    assert store.total_price == Decimal("359.90")

    row = next(i for i in store.items if i["product_id"] == hoodie.id)
    await store.update_quantity(row["id"], 2)
    await store.remove(next(i["id"] for i in store.items if i["product_id"] == sneaker.id))

    await store.refresh()
    assert [(i["product_id"], i["quantity"]) for i in store.items] == [(hoodie.id, 2)]

    await store.clear()
    await store.refresh()
    assert store.items == []
    assert not [t for t in toasts if t[0] == "error"]


async def test_cart_store_reverts_rejected_update(connect, customer):
    sneaker = await make_product(sku="SNK")
    toasts = []
    store = CartStore(connect(customer), notify=lambda *t: toasts.append(t), user={"id": customer.id})
    await store.add(sneaker.id)
    before = [dict(i) for i in store.items]

    await store.update_quantity("not-my-item", 3)
    assert store.items == before
    assert toasts[-1] == ("error", "Fehler", "Konnte Menge nicht aktualisieren.")


async def test_dashboard_tables_against_server(connect, customer, admin_user):
    product = await make_product(sku="SNK", price=Decimal("300.00"))
    order_id = await _order(customer, product, quantity=2)
    out = []
    dash = Dashboard(StorefrontApi(connect(admin_user)), out=out.append)

    await dash.load_all()
    assert [o["id"] for o in dash.orders.rows] == [order_id]
    assert {c["id"] for c in dash.customers.rows} == {customer.id, admin_user.id}
    assert dash.overview()["total_revenue"] == Decimal("600")

    assert await dash.customers.update(customer.id, {"is_vip": True})
    assert next(c for c in dash.customers.rows if c["id"] == customer.id)["is_vip"] is True
    assert await dash.set_vip(customer.id, False)
    assert next(c for c in dash.customers.rows if c["id"] == customer.id)["is_vip"] is False

    assert await dash.orders.update(order_id, {"status": "completed"})
    assert dash.orders.rows[0]["status"] == "completed"
    assert await dash.set_order_status(order_id, "shipped", "Ist unterwegs")
    assert "Versendet" in dash.render_orders()

    assert await dash.products.commit_inline(product.id, "stock", "9", "int")
    assert dash.products.rows[0]["stock"] == 9

    assert await dash.orders.delete(order_id)
    assert dash.orders.rows == []
    assert await dash.customers.delete(customer.id)
    assert [c["id"] for c in dash.customers.rows] == [admin_user.id]

    await dash.templates.load()
    assert dash.templates.rows == []
    assert out == []


async def test_dashboard_reports_server_errors(connect, customer, admin_user):
    out = []
    dash = Dashboard(StorefrontApi(connect(admin_user)), out=out.append)
    assert not await dash.customers.update(admin_user.id, {"role": "user"})
    assert not await dash.orders.delete("missing")
    assert out == [
        "Fehler beim Speichern: You cannot remove your own admin role",
        "Fehler beim Löschen: Order not found",
    ]

    customer_dash = Dashboard(StorefrontApi(connect(customer)), out=out.append)
    out.clear()
    await customer_dash.customers.load()
    assert out == ["Fehler beim Laden: Admin access required"]


async def test_chat_inbox_against_server(connect, customer, admin_user):
    now = utcnow()
    async with AsyncSessionLocal() as db:
        older = ChatSession(user_id=customer.id, updated_at=now - timedelta(hours=2))
        newer = ChatSession(user_id=customer.id, updated_at=now - timedelta(hours=1))
        db.add_all([older, newer])
        await db.flush()
        db.add_all([
            ChatMessage(session_id=older.id, sender="user", sender_id=customer.id, content="Hallo",
                        created_at=now - timedelta(hours=2)),
            ChatMessage(session_id=older.id, sender="admin", sender_id=admin_user.id, content="Hi!",
                        created_at=now - timedelta(hours=2) + timedelta(minutes=1)),
        ])
        await db.commit()
        older_id, newer_id = older.id, newer.id

    emitted = []

    async def emit(event, data):
        emitted.append((event, data))

    inbox = AdminChatInbox(AdminApi(connect(admin_user)), emit=emit)
    try:
        await inbox.load_sessions()
        assert [s["id"] for s in inbox.sessions] == [newer_id, older_id]

        await inbox.select(older_id)
        assert [m["content"] for m in inbox.messages] == ["Hallo", "Hi!"]
        assert emitted == [("admin:join_session", older_id)]

        inbox.dispatch("admin:message_received", {"sessionId": older_id, "message": {"id": "m3", "content": "?"}})
        assert inbox.sessions[0]["id"] == older_id
    finally:
        inbox.close()
