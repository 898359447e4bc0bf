import os
import tempfile
from decimal import Decimal

_TMP = tempfile.mkdtemp(prefix="storefront-tests-")
DB_FILE = os.path.join(_TMP, "test.db")

os.environ["DATABASE_URL"] = f"sqlite:///{DB_FILE}"
os.environ["APP_ENV"] = "development"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["TELEGRAM_BOT_TOKEN"] = ""
os.environ["USE_GEMINI"] = "false"
os.environ["GEMINI_API_KEY"] = ""

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from starlette.websockets import WebSocketState  # noqa: E402

from storefront.app import app  # noqa: E402
from storefront.auth import token_for  # noqa: E402
from storefront.db import Base, AsyncSessionLocal  # noqa: E402
from storefront.models import Product, Category, CartItem  # noqa: E402
from storefront import crud  # noqa: E402


@pytest.fixture
def fresh_db():
    sync_engine = create_engine(f"sqlite:///{DB_FILE}")
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()


@pytest_asyncio.fixture
async def client(fresh_db):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


async def make_user(**fields):
    async with AsyncSessionLocal() as db:
        return await crud.create_user(db, **fields)


async def make_product(**fields):
    data = {"sku": "SKU-1", "name": "Test Sneaker", "price": Decimal("100.00"), "stock": 5, "in_stock": True}
    data.update(fields)
    async with AsyncSessionLocal() as db:
        product = Product(**data)
        db.add(product)
        await db.commit()
        return product


async def make_category(**fields):
    data = {"name": "Schuhe", "slug": "schuhe"}
    data.update(fields)
    async with AsyncSessionLocal() as db:
        category = Category(**data)
        db.add(category)
        await db.commit()
        return category


async def make_cart_item(user_id: str, product_id: str, quantity: int = 1, selected_options=None):
    async with AsyncSessionLocal() as db:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity, selected_options=selected_options)
        db.add(item)
        await db.commit()
        return item


@pytest_asyncio.fixture
async def customer(fresh_db):
    return await make_user(
        email="max@example.com",
        username="max",
        full_name="Max Mustermann",
        password="geheim123",
        telegram_id="1001",
        role="user",
    )


@pytest_asyncio.fixture
async def admin_user(fresh_db):
    return await make_user(
        email="admin@example.com",
        username="admin",
        full_name="Admin User",
        password="adminpass",
        role="admin",
        verification_status="verified",
    )


@pytest.fixture
def customer_headers(customer) -> dict:
    return auth_headers(customer)


@pytest.fixture
def admin_headers(admin_user) -> dict:
    return auth_headers(admin_user)


class RecordingSocket:
    """Stands in for a connected websocket inside a ``ConnectionManager`` room."""

    application_state = WebSocketState.CONNECTED

    def __init__(self):
        self.frames = []

    async def send_json(self, frame):
        self.frames.append(frame)

    def events(self, name: str) -> list:
        return [f["data"] for f in self.frames if f["event"] == name]
