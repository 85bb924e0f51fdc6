"""Test the SQLAlchemy stock store against SQLite."""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from core.database import init_db, make_session_factory
from patterns.workflow_states import ReservationState
from storefront.errors import BackendUnavailable, InsufficientStock, StockItemNotFound
from storefront.inventory import InventoryReservationService
from storefront.models.db_models import StockItem
from storefront.sql_store import SqlStockStore
from storefront.stock_store import ConfirmOutcome


@pytest.fixture
def sql_store(session_factory):
    return SqlStockStore(session_factory)


@pytest.fixture
def sql_inventory(sql_store, clock):
    return InventoryReservationService(sql_store, clock=clock)


@pytest.mark.asyncio
async def test_try_reserve_is_conditional(sql_store, book_factory, clock):
    book = await book_factory(on_hand=3)
    expires = clock.now + timedelta(minutes=30)

    first = await sql_store.try_reserve(book, 2, "userA", clock.now, expires)
    assert first.ticket is not None
    assert first.level.reserved == 2

    second = await sql_store.try_reserve(book, 2, "userB", clock.now, expires)
    assert second.ticket is None
    assert second.level.available == 1

    level = await sql_store.get_level(book)
    assert (level.on_hand, level.reserved) == (3, 2)


@pytest.mark.asyncio
async def test_get_level_unknown_item(sql_store):
    with pytest.raises(StockItemNotFound):
        await sql_store.get_level("not-a-uuid")
    with pytest.raises(StockItemNotFound):
        await sql_store.get_level("00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_close_is_exactly_once(sql_store, book_factory, clock):
    book = await book_factory(on_hand=3)
    attempt = await sql_store.try_reserve(
        book, 2, "userA", clock.now, clock.now + timedelta(minutes=30)
    )

    closed = await sql_store.close(attempt.ticket.id, ReservationState.RELEASED, clock.now)
    assert closed.state == ReservationState.RELEASED
    assert closed.quantity == 2
    assert await sql_store.close(attempt.ticket.id, ReservationState.RELEASED, clock.now) is None

    level = await sql_store.get_level(book)
    assert level.reserved == 0


@pytest.mark.asyncio
async def test_confirm_outcomes(sql_store, book_factory, clock):
    book = await book_factory(on_hand=3)
    expires = clock.now + timedelta(minutes=30)
    held = await sql_store.try_reserve(book, 2, "userA", clock.now, expires)
    lapsed = await sql_store.try_reserve(book, 1, "userB", clock.now, expires)
    await sql_store.close(lapsed.ticket.id, ReservationState.EXPIRED, clock.now)

    outcome, ticket = await sql_store.confirm(held.ticket.id, clock.now)
    assert outcome is ConfirmOutcome.CONFIRMED
    assert ticket.state == ReservationState.CONFIRMED

    outcome, _ = await sql_store.confirm(held.ticket.id, clock.now)
    assert outcome is ConfirmOutcome.ALREADY_CONFIRMED

    outcome, ticket = await sql_store.confirm(lapsed.ticket.id, clock.now)
    assert outcome is ConfirmOutcome.LAPSED
    assert ticket.state == ReservationState.EXPIRED

    outcome, ticket = await sql_store.confirm("00000000-0000-0000-0000-000000000000", clock.now)
    assert outcome is ConfirmOutcome.UNKNOWN
    assert ticket is None

    level = await sql_store.get_level(book)
    assert (level.on_hand, level.reserved) == (1, 0)


@pytest.mark.asyncio
async def test_sell_untracked_floors_at_zero(sql_store, book_factory):
    book = await book_factory(on_hand=1)
    await sql_store.sell_untracked(book, 3)
    level = await sql_store.get_level(book)
    assert level.on_hand == 0


@pytest.mark.asyncio
async def test_active_holds_and_expiry_listing(sql_store, book_factory, clock):
    book = await book_factory(on_hand=10)
    expires = clock.now + timedelta(minutes=30)
    await sql_store.try_reserve(book, 1, "userA", clock.now, expires)
    await sql_store.try_reserve(book, 2, "userA", clock.now + timedelta(minutes=1),
                                expires + timedelta(minutes=1))
    await sql_store.try_reserve(book, 3, "userB", clock.now, expires)

    holds = await sql_store.active_holds(book, "userA")
    assert [h.quantity for h in holds] == [1, 2]
    assert holds[0].expires_at.tzinfo is not None

    assert await sql_store.expired(expires - timedelta(seconds=1)) == []
    due = await sql_store.expired(expires)
    assert sorted(t.quantity for t in due) == [1, 3]


@pytest.mark.asyncio
async def test_scenarios_end_to_end(sql_inventory, sql_store, book_factory, clock):
    book = await book_factory(on_hand=3)

    ticket_a = await sql_inventory.reserve(book, 2, "userA")
    with pytest.raises(InsufficientStock) as exc_info:
        await sql_inventory.reserve(book, 2, "userB")
    assert exc_info.value.available == 1

    await sql_inventory.release(book, 2, ticket_a.id)
    ticket_b = await sql_inventory.reserve(book, 2, "userB")

    await sql_inventory.confirm_purchase(book, 2, ticket_b.id)
    level = await sql_store.get_level(book)
    assert (level.on_hand, level.reserved) == (1, 0)

    await sql_inventory.release(book, 5, "nonexistent-id")
    level = await sql_store.get_level(book)
    assert (level.on_hand, level.reserved) == (1, 0)


@pytest.mark.asyncio
async def test_sweep_expires_and_purges(sql_inventory, sql_store, book_factory, clock):
    book = await book_factory(on_hand=3)
    ticket = await sql_inventory.reserve(book, 2, "userA")

    clock.advance(minutes=31)
    report = await sql_inventory.sweep_expired()
    assert report.expired == 1
    assert report.units_returned == 2
    assert (await sql_store.get_level(book)).reserved == 0

    clock.advance(hours=25)
    report = await sql_inventory.sweep_expired()
    assert report.purged == 1
    assert await sql_store.get_reservation(ticket.id) is None


@pytest.mark.asyncio
async def test_database_errors_become_backend_unavailable(engine, sql_store, book_factory):
    book = await book_factory(on_hand=3)
    async with engine.begin() as conn:
        await conn.exec_driver_sql("DROP TABLE inventory_reservations")

    with pytest.raises(BackendUnavailable):
        await sql_store.active_holds(book, "userA")


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    # a file database gives each session its own connection
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'stock.db'}", connect_args={"timeout": 30}
    )
    await init_db(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_reserves_never_oversell(file_session_factory, clock):
    async with file_session_factory() as session:
        item = StockItem(
            title="Kindred",
            author="Octavia E. Butler",
            format="Paperback",
            price=Decimal("14.00"),
            on_hand_count=3,
            reserved_count=0,
        )
        session.add(item)
        await session.commit()
        book = str(item.id)

    store = SqlStockStore(file_session_factory)
    expires = clock.now + timedelta(minutes=30)
    attempts = await asyncio.gather(
        *(store.try_reserve(book, 1, f"user{n}", clock.now, expires) for n in range(10))
    )

    assert sum(1 for attempt in attempts if attempt.ticket is not None) == 3
    level = await store.get_level(book)
    assert (level.on_hand, level.reserved) == (3, 3)
