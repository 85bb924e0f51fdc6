"""Test circuit breaker, dead-letter queue and idempotency store."""
from datetime import datetime, timedelta, timezone

import pytest

from core.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    DeadLetterQueue,
    DLQStatus,
    IdempotencyStatus,
    IdempotencyStore,
    OperationInProgress,
    generate_idempotency_key,
)
from storefront.errors import StockItemNotFound


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_circuit_breaker_initial_state():
    cb = CircuitBreaker()
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_success():
    cb = CircuitBreaker()
    result = await cb.call(lambda: "ok")
    assert result == "ok"
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_circuit_breaker_awaits_coroutines():
    async def fetch(value):
        return value * 2

    cb = CircuitBreaker()
    assert await cb.call(fetch, 21) == 42


@pytest.mark.asyncio
async def test_circuit_breaker_retries():
    attempt = 0

    def failing_then_ok():
        nonlocal attempt
        attempt += 1
        if attempt < 3:
            raise RuntimeError("fail")
        return "success"

    cb = CircuitBreaker(max_retries=3, backoff_base=0.01)
    result = await cb.call(failing_then_ok)
    assert result == "success"
    assert attempt == 3


@pytest.mark.asyncio
async def test_circuit_breaker_per_call_retry_override():
    attempt = 0

    def always_fail():
        nonlocal attempt
        attempt += 1
        raise RuntimeError("fail")

    cb = CircuitBreaker(max_retries=3, backoff_base=0.01)
    with pytest.raises(RuntimeError):
        await cb.call(always_fail, retries=0)
    assert attempt == 1


@pytest.mark.asyncio
async def test_circuit_breaker_opens_and_recovers():
    ticker = Ticker()
    cb = CircuitBreaker(failure_threshold=2, recovery_timeout=10.0, clock=ticker)

    def boom():
        raise ConnectionError("down")

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await cb.call(boom)
    assert cb.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError):
        await cb.call(lambda: "never called")

    ticker.now = 11.0
    assert cb.state == CircuitState.HALF_OPEN
    assert await cb.call(lambda: "back") == "back"
    assert cb.state == CircuitState.CLOSED
    assert cb.failure_count == 0


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_failure_reopens():
    ticker = Ticker()
    cb = CircuitBreaker(failure_threshold=1, recovery_timeout=5.0, clock=ticker)

    def boom():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await cb.call(boom)
    ticker.now = 6.0
    assert cb.state == CircuitState.HALF_OPEN
    with pytest.raises(ConnectionError):
        await cb.call(boom)
    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_circuit_breaker_excluded_errors_do_not_trip():
    cb = CircuitBreaker(failure_threshold=1, excluded=(StockItemNotFound,))

    def missing():
        raise StockItemNotFound("book-9")

    with pytest.raises(StockItemNotFound):
        await cb.call(missing)
    assert cb.state == CircuitState.CLOSED
    assert cb.failure_count == 0


def test_dlq_retry_cycle():
    dlq = DeadLetterQueue()
    letter = dlq.enqueue(
        queue_name="inventory.retry",
        operation="release",
        payload={"reservation_id": "r-1"},
        error="store unreachable",
        holder_id="userA",
        max_retries=2,
    )
    assert dlq.list_pending("inventory.retry") == [letter]

    assert dlq.mark_retrying(letter.id)
    assert dlq.mark_failed_retry(letter.id, "still down")
    assert letter.status == DLQStatus.PENDING

    assert dlq.mark_retrying(letter.id)
    assert dlq.mark_failed_retry(letter.id, "still down")
    assert letter.status == DLQStatus.DISCARDED
    assert not dlq.mark_retrying(letter.id)
    assert dlq.list_pending() == []


def test_dlq_resolve_and_stats():
    dlq = DeadLetterQueue()
    first = dlq.enqueue("inventory.retry", "release", {}, "err")
    dlq.enqueue("inventory.reconcile", "lapsed_confirmation", {}, "err", max_retries=0)

    dlq.mark_resolved(first.id, resolved_by="sweeper")
    stats = dlq.get_stats()
    assert stats.total == 2
    assert stats.resolved == 1
    assert stats.pending == 1
    assert dlq.get_stats("inventory.reconcile").pending == 1
    assert dlq.purge_resolved() == 1


def test_idempotency_key_is_deterministic():
    assert generate_idempotency_key("checkout", payment_id="pi_1") == generate_idempotency_key(
        "checkout", payment_id="pi_1"
    )
    assert generate_idempotency_key("checkout", payment_id="pi_1") != generate_idempotency_key(
        "checkout", payment_id="pi_2"
    )


def test_idempotency_reserve_complete_and_fail():
    store = IdempotencyStore()
    key = generate_idempotency_key("checkout", payment_id="pi_1")

    assert store.reserve(key, "checkout") is not None
    assert store.reserve(key, "checkout") is None

    store.complete(key, {"order_number": "CBW-1"})
    record = store.check(key)
    assert record.status == IdempotencyStatus.COMPLETED
    assert record.result == {"order_number": "CBW-1"}

    other = generate_idempotency_key("checkout", payment_id="pi_2")
    store.reserve(other, "checkout")
    store.fail(other, "empty cart")
    assert store.check(other) is None
    assert store.reserve(other, "checkout") is not None


@pytest.mark.asyncio
async def test_idempotency_run_once():
    store = IdempotencyStore()
    calls = 0

    async def place_order():
        nonlocal calls
        calls += 1
        return {"order_number": f"CBW-{calls}"}

    first = await store.run_once("k", "checkout", place_order)
    second = await store.run_once("k", "checkout", place_order)
    assert first == second == {"order_number": "CBW-1"}
    assert calls == 1


@pytest.mark.asyncio
async def test_idempotency_run_once_in_flight_and_failure():
    store = IdempotencyStore()
    store.reserve("busy", "checkout")
    with pytest.raises(OperationInProgress):
        await store.run_once("busy", "checkout", lambda: None)

    async def broken():
        raise ValueError("declined")

    with pytest.raises(ValueError):
        await store.run_once("k", "checkout", broken)
    assert store.check("k") is None


def test_idempotency_records_expire():
    now = [datetime(2026, 3, 1, tzinfo=timezone.utc)]
    store = IdempotencyStore(default_ttl_seconds=60, clock=lambda: now[0])
    store.reserve("k", "checkout")
    assert store.cleanup_expired() == 0

    now[0] += timedelta(seconds=60)
    assert store.check("k") is None
    store.reserve("k2", "checkout")
    now[0] += timedelta(seconds=61)
    assert store.cleanup_expired() == 1


@pytest.mark.asyncio
async def test_dlq_replay_resolves_and_requeues():
    dlq = DeadLetterQueue()
    ok = dlq.enqueue("inventory.retry", "release", {"reservation_id": "r-1"}, "err")
    flaky = dlq.enqueue("inventory.retry", "release", {"reservation_id": "r-2"}, "err")
    other = dlq.enqueue("inventory.reconcile", "lapsed_confirmation", {}, "err", max_retries=0)
    seen = []

    async def handler(letter):
        seen.append(letter.payload["reservation_id"])
        if letter.id == flaky.id:
            raise ConnectionError("store unreachable")

    assert await dlq.replay("inventory.retry", handler, retry_on=(ConnectionError,)) == 1
    assert seen == ["r-1", "r-2"]
    assert ok.status == DLQStatus.RESOLVED
    assert flaky.status == DLQStatus.PENDING
    assert flaky.error == "store unreachable"
    assert other.status == DLQStatus.PENDING
