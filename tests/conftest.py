"""Shared fixtures: a throwaway SQLite database per test, an in-memory Redis stand-in and a small catalog."""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from forge.core.context import CommandContext
from forge.db.base import Base
from forge import models  # noqa: F401 registers every table on Base.metadata
from forge.services.bom_service import BOMService
from forge.services.catalog_service import CatalogService
from forge.services.ledger_service import LedgerService


class FakeRedis:
    """The handful of commands the stock cache uses."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)


@pytest.fixture
def fake_redis(monkeypatch):
    fake = FakeRedis()

    async def _get_redis():
        return fake

    monkeypatch.setattr("forge.services.ledger_service.get_redis", _get_redis)
    return fake


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'forge-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory, fake_redis):
    async with session_factory() as session:
        yield session


@pytest.fixture
def ctx():
    return CommandContext(tenant_id=uuid.uuid4(), actor_id=uuid.uuid4())


@pytest.fixture
async def workshop(db, ctx):
    return await CatalogService.create_location(
        db, ctx, "WS-1", "Workshop", is_manufacturing_location=True, is_purchasable_location=True
    )


@pytest.fixture
async def showroom(db, ctx):
    return await CatalogService.create_location(db, ctx, "SHOP", "Showroom", is_sellable_location=True)


@pytest.fixture
def make_product(db, ctx):
    async def _make(sku: str, **kwargs):
        return await CatalogService.create_product(db, ctx, sku, sku.title(), **kwargs)

    return _make


@pytest.fixture
def stock(db, ctx):
    """Put ``qty`` of a product on hand at a location."""

    async def _stock(product, location, qty):
        return await LedgerService.adjust(db, ctx, product.id, location.id, Decimal(str(qty)), notes="test stock")

    return _stock


@pytest.fixture
async def kit(db, ctx, make_product):
    """Finished product P built from 2 x A + 1 x B."""
    p = await make_product("P", is_manufactured=True, is_purchasable=False, cost_price=Decimal("40"))
    a = await make_product("A", cost_price=Decimal("5"))
    b = await make_product("B", cost_price=Decimal("12"))
    bom = await BOMService.create_bom(
        db,
        ctx,
        p.id,
        [
            {"component_id": a.id, "quantity": Decimal("2")},
            {"component_id": b.id, "quantity": Decimal("1")},
        ],
        is_default=True,
    )
    return {"P": p, "A": a, "B": b, "bom": bom}
