"""Shared fixtures: a fixed clock, an in-memory stock store and a SQLite database."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from core.database import init_db, make_session_factory
from patterns.domain_config import ReservationConfig
from storefront.inventory import InventoryReservationService
from storefront.models.db_models import StockItem
from storefront.stock_store import InMemoryStockStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStockStore()


@pytest.fixture
def inventory(store, clock):
    return InventoryReservationService(store, ReservationConfig(), clock=clock)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def book_factory(session_factory):
    """Insert a stock item; the returned coroutine function yields its id."""

    async def add_book(on_hand: int, reserved: int = 0, **overrides) -> str:
        data = {
            "title": "The Left Hand of Darkness",
            "author": "Ursula K. Le Guin",
            "format": "Paperback",
            "price": Decimal("12.99"),
            "on_hand_count": on_hand,
            "reserved_count": reserved,
        }
        data.update(overrides)
        async with session_factory() as session:
            item = StockItem(**data)
            session.add(item)
            await session.commit()
            return str(item.id)

    return add_book
