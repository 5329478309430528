"""
Card Price Tracker — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory aiosqlite engine / session factory with the full schema
- A seeded group and a product builder
- Async test support via pytest-asyncio
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from price_tracker.models import Base, Group, Product


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

GROUP_ID = 23237


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for anyio tests."""
    return "asyncio"


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    In-memory SQLite engine with all tables created.

    StaticPool keeps a single connection so every session (runner chunks,
    stale batches) sees the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        session.add(Group(id=GROUP_ID, name="Scarlet & Violet 151", category_id=3))
        await session.commit()
    return factory


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_product(
    variant_key: str = "500001:Normal",
    current_price: Decimal | None = Decimal("10.00"),
    history: dict[str, Any] | None = None,
    updated_at: datetime | None = None,
    **overrides: Any,
) -> Product:
    """Build a Product row with sensible defaults for tests."""
    product_id = int(variant_key.split(":")[0])
    fields: dict[str, Any] = {
        "variant_key": variant_key,
        "product_id": product_id,
        "name": f"Card {product_id}",
        "group_id": GROUP_ID,
        "current_price": current_price,
        "price_history": history if history is not None else {},
        "is_eligible": False,
        "updated_at": updated_at or datetime.now(timezone.utc) - timedelta(days=2),
    }
    fields.update(overrides)
    return Product(**fields)


@pytest.fixture
def now() -> datetime:
    """Current timestamp for tests."""
    return datetime.now(timezone.utc)
