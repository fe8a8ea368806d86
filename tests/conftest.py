"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Iterable
from datetime import date
from pathlib import Path
from typing import Any, AsyncGenerator, Optional

# Set test environment variables before the package reads them
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SWEEP_ENABLED", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vendorstock.config import Settings
from vendorstock.database.crud import create_product, create_vendor
from vendorstock.database.engine import build_engine
from vendorstock.database.models import Base, Product, Vendor
from vendorstock.database.store import SqlItemStore
from vendorstock.exceptions import ConcurrentModificationError, ItemNotFoundError
from vendorstock.schemas import BulkPatchResult, InventoryItem, ItemPatch

TODAY = date(2025, 3, 1)


@pytest.fixture
def test_settings() -> Settings:
    """Settings for engine and sweep tests."""
    return Settings(
        database_url_override="sqlite+aiosqlite:///:memory:",
        near_expiry_threshold_days=7,
        sweep_enabled=False,
        sweep_timezone="UTC",
        sweep_concurrency=2,
        bulk_recalculate_before_write=True,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[Any, None]:
    """File-backed SQLite engine so concurrent sessions each get a connection."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'vendorstock_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlItemStore:
    return SqlItemStore(session_factory)


@pytest_asyncio.fixture
async def vendor(db_session: AsyncSession) -> Vendor:
    return await create_vendor(db_session, "vendor@example.com", "not-a-real-hash", "Fresh Mart")


@pytest_asyncio.fixture
async def products(db_session: AsyncSession) -> list[Product]:
    """A few catalog products."""
    return [
        await create_product(db_session, "Red Apples", brand="Orchard", category="Fruit", base_price=2.5),
        await create_product(db_session, "Whole Milk", brand="DairyCo", category="Dairy", base_price=1.2),
        await create_product(db_session, "Sourdough Bread", brand="Bakehouse", category="Bakery", base_price=4.0),
    ]


class FakeItemStore:
    """In-memory ``ItemStore`` with the same version semantics as ``SqlItemStore``."""

    def __init__(self, items: Iterable[InventoryItem] = ()) -> None:
        self.items: dict[int, InventoryItem] = {}
        self.bulk_calls: list[list[ItemPatch]] = []
        self.upserts: list[InventoryItem] = []
        self.fail_bulk_patch: Optional[Exception] = None
        self.fail_upsert_for: set[int] = set()
        self.stale_ids: set[int] = set()
        self._next_id = 1
        for item in items:
            self.add(item)

    def add(self, item: InventoryItem) -> InventoryItem:
        if item.id is None:
            item = item.model_copy(update={"id": self._next_id})
        self._next_id = max(self._next_id, item.id) + 1
        self.items[item.id] = item
        return item

    async def find_by_vendor(self, vendor_id: int) -> list[InventoryItem]:
        return [i for i in self.items.values() if i.vendor_id == vendor_id]

    async def find_by_id(self, item_id: int) -> Optional[InventoryItem]:
        return self.items.get(item_id)

    async def find_expiry_tracked(self) -> list[InventoryItem]:
        return [
            i
            for i in self.items.values()
            if i.expiry_tracking.has_expiry and i.settings.is_active and i.expiry_tracking.batches
        ]

    async def bulk_patch(self, patches: list[ItemPatch]) -> BulkPatchResult:
        self.bulk_calls.append(list(patches))
        if self.fail_bulk_patch is not None:
            raise self.fail_bulk_patch
        result = BulkPatchResult()
        for patch in patches:
            item = self.items.get(patch.item_id)
            if item is None or item.version != patch.expected_version or patch.item_id in self.stale_ids:
                result.conflicts.append(patch.item_id)
                continue
            sections: dict[str, dict[str, Any]] = {}
            for path, value in patch.fields.items():
                section, name = path.split(".")
                sections.setdefault(section, {})[name] = value
            update = {
                section: getattr(item, section).model_copy(update=values)
                for section, values in sections.items()
            }
            update["version"] = item.version + 1
            self.items[patch.item_id] = item.model_copy(update=update)
            result.modified_count += 1
        return result

    async def upsert(self, item: InventoryItem) -> InventoryItem:
        if item.id in self.fail_upsert_for:
            raise RuntimeError(f"write failed for item {item.id}")
        if item.id is None:
            stored = self.add(item.model_copy(update={"version": 1}))
        else:
            current = self.items.get(item.id)
            if current is None:
                raise ItemNotFoundError(f"Item {item.id} not found", item_id=item.id)
            if current.version != item.version:
                raise ConcurrentModificationError(item.id, item.version, current.version)
            stored = item.model_copy(update={"version": item.version + 1})
            self.items[item.id] = stored
        self.upserts.append(stored)
        return stored


@pytest.fixture
def fake_store() -> FakeItemStore:
    return FakeItemStore()
