# storefront/db.py
from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from storefront import config

ASYNC_DRIVERS = {"postgresql": "postgresql+asyncpg", "postgres": "postgresql+asyncpg", "sqlite": "sqlite+aiosqlite"}


def normalize_database_url(url: str) -> str:
    # Ensure async driver
    u = make_url(url)
    u = u.set(drivername=ASYNC_DRIVERS.get(u.drivername, u.drivername))
    if u.get_backend_name() == "postgresql":
        u = strip_query_params(u)
    return u.render_as_string(hide_password=False)


def strip_query_params(u, drop_keys=("sslmode", "channel_binding")):
    return u.difference_update_query(drop_keys)


if not config.DATABASE_URL:
    raise RuntimeError("DATABASE_URL not set in environment")

CLEAN_DATABASE_URL = normalize_database_url(config.DATABASE_URL)

ENGINE_KWARGS = {"future": True, "echo": False}
if CLEAN_DATABASE_URL.startswith("sqlite"):
    # aiosqlite connections are bound to the loop that opened them
    ENGINE_KWARGS["poolclass"] = NullPool
else:
    ENGINE_KWARGS.update(
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=5,
        max_overflow=10,
    )

engine = create_async_engine(CLEAN_DATABASE_URL, **ENGINE_KWARGS)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
    class_=AsyncSession,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
