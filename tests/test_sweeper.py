"""Test the background expiry sweeper and holder identity."""
import asyncio

import pytest

from api.middleware import generate_session_id
from core.resilience import IdempotencyStore
from storefront.sweeper import ExpirySweeper


@pytest.mark.asyncio
async def test_run_once_records_report(store, inventory, clock):
    store.add_item("book-1", on_hand=2)
    await inventory.reserve("book-1", 1, "userA")
    clock.advance(minutes=31)

    sweeper = ExpirySweeper(inventory, interval_seconds=60)
    report = await sweeper.run_once()
    assert report.expired == 1
    assert sweeper.last_report is report
    assert store.level("book-1").reserved == 0


@pytest.mark.asyncio
async def test_start_and_stop(store, inventory, clock):
    store.add_item("book-1", on_hand=2)
    await inventory.reserve("book-1", 2, "userA")
    clock.advance(minutes=30)

    sweeper = ExpirySweeper(inventory, interval_seconds=0.01)
    sweeper.start()
    assert sweeper.running
    for _ in range(100):
        if store.level("book-1").reserved == 0:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert not sweeper.running
    assert store.level("book-1").reserved == 0


@pytest.mark.asyncio
async def test_failing_pass_does_not_stop_the_loop(inventory):
    calls = 0

    async def broken_sweep(now=None):
        nonlocal calls
        calls += 1
        raise RuntimeError("boom")

    inventory.sweep_expired = broken_sweep
    sweeper = ExpirySweeper(inventory, interval_seconds=0.01)
    sweeper.start()
    for _ in range(100):
        if calls >= 2:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()
    assert calls >= 2


@pytest.mark.asyncio
async def test_run_once_drops_expired_checkout_keys(inventory, clock):
    keys = IdempotencyStore(default_ttl_seconds=60, clock=lambda: clock.now)
    keys.reserve("checkout-pi_1", "checkout")
    keys.complete("checkout-pi_1", {"order_number": "CBW-1"})

    sweeper = ExpirySweeper(inventory, interval_seconds=60, idempotency=keys)
    assert (await sweeper.run_once()).keys_expired == 0

    clock.advance(seconds=61)
    report = await sweeper.run_once()
    assert report.keys_expired == 1
    assert keys.check("checkout-pi_1") is None


def test_session_id_format():
    session_id = generate_session_id()
    prefix, millis, suffix = session_id.split("_")
    assert prefix == "session"
    assert millis.isdigit()
    assert len(suffix) == 9
    assert generate_session_id() != session_id
