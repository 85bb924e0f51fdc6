"""Stock store the shared, persistent home of the stock counters.

The reservation service never touches counters directly; it asks a
StockStore to apply one atomic conditional change at a time. Two backends
implement the contract:

- InMemoryStockStore: a single asyncio lock around every change. Used by
  the test-suite and for local development without a database.
- SqlStockStore (storefront.sql_store): conditional UPDATE statements inside
  one transaction per call. The production backend.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from patterns.rules_engine import check_hold_expired
from patterns.workflow_states import ReservationLifecycle, ReservationState
from storefront.errors import StockItemNotFound

UNTRACKED_PREFIX = "untracked_"


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StockLevel:
    """Counters of one stock item as read in a single round-trip."""

    stock_item_id: str
    on_hand: int
    reserved: int

    @property
    def available(self) -> int:
        return self.on_hand - self.reserved


@dataclass(frozen=True)
class ReservationTicket:
    """A hold handed back to the cart line that asked for it."""

    id: str
    stock_item_id: str
    holder_id: str
    quantity: int
    reserved_at: datetime
    expires_at: datetime
    state: ReservationState = ReservationState.CREATED

    @property
    def tracked(self) -> bool:
        """False for holds issued in degraded mode, which were never stored."""
        return not is_untracked(self.id)

    def is_expired(self, now: datetime) -> bool:
        return check_hold_expired(self.expires_at, now).passed

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "holder_id": self.holder_id,
            "quantity": self.quantity,
            "state": self.state.value,
            "tracked": self.tracked,
            "reserved_at": self.reserved_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class ReserveAttempt:
    """Result of a conditional increment: a ticket, or the level that refused it."""

    ticket: ReservationTicket | None
    level: StockLevel


class ConfirmOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    LAPSED = "lapsed"      # released or expired before payment completed
    UNKNOWN = "unknown"


def is_untracked(reservation_id: str | None) -> bool:
    return bool(reservation_id) and reservation_id.startswith(UNTRACKED_PREFIX)


def untracked_ticket_id() -> str:
    return f"{UNTRACKED_PREFIX}{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class StockStore(ABC):
    """Atomic operations over stock counters and reservation rows.

    Every method is one round-trip. Implementations raise
    BackendUnavailable when the store cannot be reached and
    StockItemNotFound for an unknown stock item.
    """

    @abstractmethod
    async def get_level(self, stock_item_id: str) -> StockLevel:
        ...

    @abstractmethod
    async def try_reserve(
        self,
        stock_item_id: str,
        quantity: int,
        holder_id: str,
        reserved_at: datetime,
        expires_at: datetime,
    ) -> ReserveAttempt:
        """Increment reserved by quantity only if that many copies are free."""

    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> ReservationTicket | None:
        ...

    @abstractmethod
    async def active_holds(self, stock_item_id: str, holder_id: str) -> list[ReservationTicket]:
        """Active holds of one holder on one item, oldest first."""

    @abstractmethod
    async def close(
        self,
        reservation_id: str,
        state: ReservationState,
        closed_at: datetime,
    ) -> ReservationTicket | None:
        """Move an active hold to RELEASED/EXPIRED and return its stock to the pool.

        Returns the closed ticket, or None when the hold was not active.
        """

    @abstractmethod
    async def confirm(
        self,
        reservation_id: str,
        closed_at: datetime,
    ) -> tuple[ConfirmOutcome, ReservationTicket | None]:
        """Move an active hold to CONFIRMED, decrementing on_hand and reserved."""

    @abstractmethod
    async def sell_untracked(self, stock_item_id: str, quantity: int) -> None:
        """Decrement on_hand for copies sold without a hold."""

    @abstractmethod
    async def expired(self, now: datetime, limit: int = 200) -> list[ReservationTicket]:
        """Active holds whose expiry instant has been reached."""

    @abstractmethod
    async def purge(self, closed_before: datetime) -> int:
        """Delete terminal holds closed before the cutoff."""


def _floor_sub(value: int, amount: int) -> int:
    return value - amount if value >= amount else 0


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

@dataclass
class _Counters:
    on_hand: int
    reserved: int = 0


@dataclass
class _Hold:
    ticket: ReservationTicket
    lifecycle: ReservationLifecycle
    closed_at: datetime | None = None

    def snapshot(self) -> ReservationTicket:
        return replace(self.ticket, state=self.lifecycle.current_state)


class InMemoryStockStore(StockStore):
    """In-memory stock store. One lock serialises every counter change."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._items: dict[str, _Counters] = {}
        self._holds: dict[str, _Hold] = {}
        self._lock = asyncio.Lock()

    def add_item(self, stock_item_id: str, on_hand: int, reserved: int = 0) -> None:
        self._items[stock_item_id] = _Counters(on_hand=on_hand, reserved=reserved)

    def level(self, stock_item_id: str) -> StockLevel:
        """Synchronous peek for tests and debugging."""
        counters = self._counters(stock_item_id)
        return StockLevel(stock_item_id, counters.on_hand, counters.reserved)

    def _counters(self, stock_item_id: str) -> _Counters:
        try:
            return self._items[stock_item_id]
        except KeyError:
            raise StockItemNotFound(stock_item_id) from None

    async def _round_trip(self) -> None:
        # every call yields, so concurrent callers genuinely interleave
        await asyncio.sleep(self.latency)

    async def get_level(self, stock_item_id: str) -> StockLevel:
        await self._round_trip()
        return self.level(stock_item_id)

    async def try_reserve(self, stock_item_id, quantity, holder_id, reserved_at, expires_at):
        await self._round_trip()
        async with self._lock:
            counters = self._counters(stock_item_id)
            if counters.on_hand - counters.reserved < quantity:
                return ReserveAttempt(
                    None, StockLevel(stock_item_id, counters.on_hand, counters.reserved)
                )
            counters.reserved += quantity
            ticket = ReservationTicket(
                id=str(uuid.uuid4()),
                stock_item_id=stock_item_id,
                holder_id=holder_id,
                quantity=quantity,
                reserved_at=reserved_at,
                expires_at=expires_at,
            )
            self._holds[ticket.id] = _Hold(ticket, ReservationLifecycle(reservation_id=ticket.id))
            return ReserveAttempt(
                ticket, StockLevel(stock_item_id, counters.on_hand, counters.reserved)
            )

    async def get_reservation(self, reservation_id):
        await self._round_trip()
        hold = self._holds.get(reservation_id)
        return hold.snapshot() if hold else None

    async def active_holds(self, stock_item_id, holder_id):
        await self._round_trip()
        holds = [
            h.snapshot() for h in self._holds.values()
            if h.ticket.stock_item_id == stock_item_id
            and h.ticket.holder_id == holder_id
            and h.lifecycle.current_state == ReservationState.CREATED
        ]
        return sorted(holds, key=lambda t: t.reserved_at)

    async def close(self, reservation_id, state, closed_at):
        await self._round_trip()
        async with self._lock:
            hold = self._holds.get(reservation_id)
            if hold is None or not hold.lifecycle.can_transition(state):
                return None
            hold.lifecycle.transition(state)
            hold.closed_at = closed_at
            counters = self._items.get(hold.ticket.stock_item_id)
            if counters is not None:
                counters.reserved = _floor_sub(counters.reserved, hold.ticket.quantity)
            return hold.snapshot()

    async def confirm(self, reservation_id, closed_at):
        await self._round_trip()
        async with self._lock:
            hold = self._holds.get(reservation_id)
            if hold is None:
                return ConfirmOutcome.UNKNOWN, None
            current = hold.lifecycle.current_state
            if current == ReservationState.CONFIRMED:
                return ConfirmOutcome.ALREADY_CONFIRMED, hold.snapshot()
            if not hold.lifecycle.can_transition(ReservationState.CONFIRMED):
                return ConfirmOutcome.LAPSED, hold.snapshot()
            hold.lifecycle.transition(ReservationState.CONFIRMED, actor="checkout")
            hold.closed_at = closed_at
            counters = self._items.get(hold.ticket.stock_item_id)
            if counters is not None:
                counters.on_hand = _floor_sub(counters.on_hand, hold.ticket.quantity)
                counters.reserved = _floor_sub(counters.reserved, hold.ticket.quantity)
            return ConfirmOutcome.CONFIRMED, hold.snapshot()

    async def sell_untracked(self, stock_item_id, quantity):
        await self._round_trip()
        async with self._lock:
            counters = self._counters(stock_item_id)
            counters.on_hand = _floor_sub(counters.on_hand, quantity)

    async def expired(self, now, limit=200):
        await self._round_trip()
        due = [
            h.snapshot() for h in self._holds.values()
            if h.lifecycle.current_state == ReservationState.CREATED
            and h.ticket.is_expired(now)
        ]
        due.sort(key=lambda t: t.expires_at)
        return due[:limit]

    async def purge(self, closed_before):
        await self._round_trip()
        async with self._lock:
            stale = [
                rid for rid, h in self._holds.items()
                if h.lifecycle.is_terminal and h.closed_at and h.closed_at < closed_before
            ]
            for rid in stale:
                del self._holds[rid]
            return len(stale)
