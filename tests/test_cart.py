"""Test cart lines and the holds behind them."""
from decimal import Decimal

import pytest

from patterns.domain_config import StorefrontConfig
from storefront.cart import CartService, summarize
from storefront.errors import (
    CartLimitExceeded,
    CartLineNotFound,
    InsufficientStock,
    InvalidGiftCard,
    StockItemNotFound,
)
from storefront.repository import CartRepository, StockItemRepository


@pytest.fixture
def carts(inventory, session):
    return CartService(inventory, CartRepository(session), StockItemRepository(session))


@pytest.fixture
def stocked(book_factory, store):
    """Create a catalog row and mirror its counters into the in-memory store."""

    async def make(on_hand: int, **overrides) -> str:
        book_id = await book_factory(on_hand=on_hand, **overrides)
        store.add_item(book_id, on_hand=on_hand)
        return book_id

    return make


@pytest.mark.asyncio
async def test_add_item_reserves_before_adding(carts, stocked, store):
    book = await stocked(on_hand=3)

    line = await carts.add_item("userA", book, 2)
    assert line.quantity == 2
    assert line.title == "The Left Hand of Darkness"
    assert store.level(book).reserved == 2


@pytest.mark.asyncio
async def test_add_item_merges_into_existing_line(carts, stocked, store, inventory):
    book = await stocked(on_hand=5)

    first = await carts.add_item("userA", book, 1)
    second = await carts.add_item("userA", book, 2)
    assert first.id == second.id
    assert second.quantity == 3
    assert len(await inventory.holds(book, "userA")) == 2

    summary = await carts.get_cart("userA")
    assert len(summary.lines) == 1
    assert summary.item_count == 3


@pytest.mark.asyncio
async def test_add_item_refused_leaves_cart_unchanged(carts, stocked, store, inventory):
    book = await stocked(on_hand=3)
    await inventory.reserve(book, 2, "someone-else")

    with pytest.raises(InsufficientStock) as exc_info:
        await carts.add_item("userA", book, 2)
    assert str(exc_info.value) == "Only 1 copies available. 2 are reserved by other shoppers."

    summary = await carts.get_cart("userA")
    assert summary.lines == []
    assert store.level(book).reserved == 2


@pytest.mark.asyncio
async def test_add_unknown_book(carts):
    with pytest.raises(StockItemNotFound):
        await carts.add_item("userA", "00000000-0000-0000-0000-000000000000")


@pytest.mark.asyncio
async def test_item_limit(inventory, session, stocked):
    config = StorefrontConfig(max_items_per_order=3)
    carts = CartService(inventory, CartRepository(session), StockItemRepository(session), config)
    book = await stocked(on_hand=10)

    await carts.add_item("userA", book, 2)
    with pytest.raises(CartLimitExceeded):
        await carts.add_item("userA", book, 2)


@pytest.mark.asyncio
async def test_gift_card_never_reserves(carts, stocked, store):
    book = await stocked(on_hand=1)
    line = await carts.add_gift_card("userA", Decimal("25.00"), recipient_name="Sam")
    assert line.kind == "gift_card"
    assert line.title == "$25.00 Gift Card"
    assert not line.is_physical
    assert store.level(book).reserved == 0


@pytest.mark.asyncio
async def test_gift_card_amount_limits(carts):
    with pytest.raises(InvalidGiftCard):
        await carts.add_gift_card("userA", Decimal("4.99"))
    with pytest.raises(InvalidGiftCard):
        await carts.add_gift_card("userA", Decimal("500.01"))


@pytest.mark.asyncio
async def test_update_quantity_up_reserves_delta(carts, stocked, store):
    book = await stocked(on_hand=5)
    line = await carts.add_item("userA", book, 1)

    updated = await carts.update_quantity("userA", str(line.id), 4)
    assert updated.quantity == 4
    assert store.level(book).reserved == 4


@pytest.mark.asyncio
async def test_update_quantity_up_refused_keeps_line(carts, stocked, store, inventory):
    book = await stocked(on_hand=3)
    line = await carts.add_item("userA", book, 1)
    await inventory.reserve(book, 2, "someone-else")

    with pytest.raises(InsufficientStock):
        await carts.update_quantity("userA", str(line.id), 2)
    assert line.quantity == 1
    assert store.level(book).reserved == 3


@pytest.mark.asyncio
async def test_update_quantity_down_releases_newest_first(carts, stocked, store, inventory):
    book = await stocked(on_hand=5)
    line = await carts.add_item("userA", book, 1)
    await carts.add_item("userA", book, 2)

    updated = await carts.update_quantity("userA", str(line.id), 2)
    assert updated.quantity == 2
    assert store.level(book).reserved == 2
    holds = await inventory.holds(book, "userA")
    assert sorted(h.quantity for h in holds) == [1, 1]


@pytest.mark.asyncio
async def test_update_quantity_zero_removes_line(carts, stocked, store):
    book = await stocked(on_hand=3)
    line = await carts.add_item("userA", book, 2)

    assert await carts.update_quantity("userA", str(line.id), 0) is None
    assert store.level(book).reserved == 0
    assert (await carts.get_cart("userA")).lines == []


@pytest.mark.asyncio
async def test_remove_item_releases_holds(carts, stocked, store):
    book = await stocked(on_hand=3)
    line = await carts.add_item("userA", book, 1)
    await carts.add_item("userA", book, 1)

    await carts.remove_item("userA", str(line.id))
    assert store.level(book).reserved == 0


@pytest.mark.asyncio
async def test_remove_item_of_other_holder_not_found(carts, stocked):
    book = await stocked(on_hand=3)
    line = await carts.add_item("userA", book, 1)
    with pytest.raises(CartLineNotFound):
        await carts.remove_item("userB", str(line.id))


@pytest.mark.asyncio
async def test_clear_releases_everything(carts, stocked, store):
    first = await stocked(on_hand=3)
    second = await stocked(on_hand=3, title="Kindred", author="Octavia E. Butler")
    await carts.add_item("userA", first, 2)
    await carts.add_item("userA", second, 1)
    await carts.add_gift_card("userA", Decimal("10.00"))

    removed = await carts.clear("userA")
    assert removed == 3
    assert store.level(first).reserved == 0
    assert store.level(second).reserved == 0


@pytest.mark.asyncio
async def test_cart_totals(carts, stocked):
    book = await stocked(on_hand=10)
    await carts.add_item("userA", book, 2)

    summary = await carts.get_cart("userA")
    assert summary.subtotal == Decimal("25.98")
    assert summary.tax == Decimal("2.14")
    assert summary.shipping == Decimal("5.00")
    assert summary.total == Decimal("33.12")

    await carts.add_item("userA", book, 2)
    summary = await carts.get_cart("userA")
    assert summary.subtotal == Decimal("51.96")
    assert summary.tax == Decimal("4.29")
    assert summary.shipping == Decimal("0.00")
    assert summary.to_dict()["total"] == "56.25"


def test_empty_cart_has_no_shipping():
    summary = summarize([], StorefrontConfig().pricing)
    assert summary.item_count == 0
    assert summary.shipping == Decimal("0.00")
    assert summary.total == Decimal("0.00")
