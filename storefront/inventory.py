"""Inventory reservation service.

Mediates all contention for physical stock between concurrent shoppers and
is the only writer of the stock counters. Four operations make up its
contract:

- reserve: hold copies when a book enters a cart
- release: give a hold back (cart removal, cart clear, expiry)
- confirm_purchase: turn a hold into a sale once payment succeeded
- check_availability: read-only answer for "in stock" badges

plus sweep_expired, run periodically by storefront.sweeper.

Failures are absorbed here. reserve raises InsufficientStock (and, only
under the fail-closed policy, BackendUnavailable); release and
confirm_purchase never raise. Bookkeeping calls the store rejected are
parked in the dead-letter queue and retried on the next sweep.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from core.logging_config import get_logger
from core.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    DeadLetterQueue,
)
from patterns.domain_config import DegradedModePolicy, ReservationConfig
from patterns.rules_engine import check_low_stock, check_stock_availability
from patterns.workflow_states import ReservationState
from storefront.errors import (
    BackendUnavailable,
    InsufficientStock,
    StockItemNotFound,
)
from storefront.stock_store import (
    ConfirmOutcome,
    ReservationTicket,
    StockStore,
    is_untracked,
    untracked_ticket_id,
)

logger = get_logger(__name__)

RETRY_QUEUE = "inventory.retry"
RECONCILE_QUEUE = "inventory.reconcile"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class Availability:
    """Display-only view of a stock item's counters."""

    available: bool
    on_hand: int | None
    reserved: int | None
    message: str | None = None
    low_stock: bool = False
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "on_hand": self.on_hand,
            "reserved": self.reserved,
            "message": self.message,
            "low_stock": self.low_stock,
            "degraded": self.degraded,
        }


@dataclass
class SweepReport:
    """What one sweep pass did."""

    expired: int = 0
    units_returned: int = 0
    retried: int = 0
    purged: int = 0
    letters_purged: int = 0
    keys_expired: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "expired": self.expired,
            "units_returned": self.units_returned,
            "retried": self.retried,
            "purged": self.purged,
            "letters_purged": self.letters_purged,
            "keys_expired": self.keys_expired,
            "errors": self.errors,
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class InventoryReservationService:
    """Reservation lifecycle over a StockStore."""

    def __init__(
        self,
        store: StockStore,
        config: ReservationConfig | None = None,
        dead_letters: DeadLetterQueue | None = None,
        clock: Callable[[], datetime] = utcnow,
        breaker: CircuitBreaker | None = None,
    ):
        self.store = store
        self.config = config or ReservationConfig()
        self.dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()
        self.clock = clock
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=self.config.store_failure_threshold,
            recovery_timeout=self.config.store_recovery_seconds,
            excluded=(StockItemNotFound,),
        )

    @property
    def hold_duration(self) -> timedelta:
        return timedelta(minutes=self.config.hold_minutes)

    @property
    def fail_open(self) -> bool:
        return self.config.degraded_mode_policy is DegradedModePolicy.FAIL_OPEN

    async def _store_call(self, func, *args, read: bool = False):
        """Run one store call; any backend failure surfaces as BackendUnavailable."""
        retries = self.config.store_read_retries if read else 0
        try:
            return await self.breaker.call(func, *args, retries=retries)
        except (StockItemNotFound, BackendUnavailable):
            raise
        except CircuitOpenError as exc:
            raise BackendUnavailable(str(exc)) from exc
        except Exception as exc:
            raise BackendUnavailable(f"{type(exc).__name__}: {exc}") from exc

    # -- reserve --

    async def reserve(
        self,
        stock_item_id: str,
        quantity: int,
        holder_id: str,
    ) -> ReservationTicket:
        """Hold quantity copies for holder_id.

        Raises InsufficientStock when fewer copies are free. The check and
        the increment happen in one conditional update inside the store.
        """
        if quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {quantity}")

        now = self.clock()
        expires_at = now + self.hold_duration
        try:
            attempt = await self._store_call(
                self.store.try_reserve, stock_item_id, quantity, holder_id, now, expires_at
            )
        except (BackendUnavailable, StockItemNotFound) as exc:
            return self._degraded_reserve(stock_item_id, quantity, holder_id, now, expires_at, exc)

        if attempt.ticket is None:
            level = attempt.level
            logger.info(
                "reserve refused: item=%s holder=%s requested=%d available=%d reserved=%d",
                stock_item_id, holder_id, quantity, level.available, level.reserved,
            )
            raise InsufficientStock(level.available, level.reserved, quantity)

        logger.debug(
            "reserved %d of %s for %s (reservation %s, expires %s)",
            quantity, stock_item_id, holder_id, attempt.ticket.id, expires_at.isoformat(),
        )
        return attempt.ticket

    def _degraded_reserve(self, stock_item_id, quantity, holder_id, now, expires_at, exc):
        if not self.fail_open:
            logger.warning("reserve failed closed for %s: %s", stock_item_id, exc)
            if isinstance(exc, BackendUnavailable):
                raise exc
            raise BackendUnavailable(str(exc)) from exc

        logger.warning(
            "stock lookup failed for %s, issuing untracked hold (fail-open): %s",
            stock_item_id, exc,
        )
        return ReservationTicket(
            id=untracked_ticket_id(),
            stock_item_id=stock_item_id,
            holder_id=holder_id,
            quantity=quantity,
            reserved_at=now,
            expires_at=expires_at,
        )

    # -- release --

    async def release(
        self,
        stock_item_id: str,
        quantity: int,
        reservation_id: str | None = None,
        holder_id: str | None = None,
    ) -> None:
        """Give held copies back to the pool. Idempotent; never raises."""
        await self._close(stock_item_id, quantity, reservation_id, holder_id, ReservationState.RELEASED)

    async def _close(self, stock_item_id, quantity, reservation_id, holder_id, state) -> int:
        if is_untracked(reservation_id):
            return 0

        now = self.clock()
        try:
            if reservation_id:
                ids = [reservation_id]
            elif holder_id:
                holds = await self._store_call(
                    self.store.active_holds, stock_item_id, holder_id, read=True
                )
                ids = [hold.id for hold in holds]
            else:
                logger.warning("release of %s without reservation or holder ignored", stock_item_id)
                return 0

            returned = 0
            for rid in ids:
                closed = await self._store_call(self.store.close, rid, state, now)
                if closed is None:
                    continue
                if closed.quantity != quantity and reservation_id:
                    logger.warning(
                        "reservation %s held %d but caller released %d; returned the held amount",
                        rid, closed.quantity, quantity,
                    )
                returned += closed.quantity
            return returned
        except (BackendUnavailable, StockItemNotFound) as exc:
            logger.warning(
                "%s of %s (reservation=%s) failed, parked for retry: %s",
                state.value, stock_item_id, reservation_id, exc,
            )
            self.dead_letters.enqueue(
                queue_name=RETRY_QUEUE,
                operation="release" if state is ReservationState.RELEASED else "expire",
                holder_id=holder_id,
                payload={
                    "stock_item_id": stock_item_id,
                    "quantity": quantity,
                    "reservation_id": reservation_id,
                    "holder_id": holder_id,
                },
                error=str(exc),
            )
            return 0

    # -- confirm --

    async def confirm_purchase(
        self,
        stock_item_id: str,
        quantity: int,
        reservation_id: str | None = None,
        holder_id: str | None = None,
    ) -> None:
        """Convert held copies into a sale. Idempotent per reservation; never raises."""
        sale = {
            "stock_item_id": stock_item_id,
            "quantity": quantity,
            "reservation_id": reservation_id,
            "holder_id": holder_id,
        }
        try:
            if reservation_id and not is_untracked(reservation_id):
                await self._confirm_ticket(stock_item_id, quantity, reservation_id, holder_id)
            else:
                await self._confirm_untracked(sale)
        except (BackendUnavailable, StockItemNotFound) as exc:
            logger.error(
                "confirm_purchase of %d x %s (reservation=%s) failed, %d parked for retry: %s",
                quantity, stock_item_id, reservation_id, sale["quantity"], exc,
            )
            self.dead_letters.enqueue(
                queue_name=RETRY_QUEUE,
                operation="confirm_purchase",
                holder_id=holder_id,
                payload=sale,
                error=str(exc),
            )

    async def _confirm_ticket(self, stock_item_id, quantity, reservation_id, holder_id) -> None:
        outcome, ticket = await self._store_call(self.store.confirm, reservation_id, self.clock())
        if outcome is ConfirmOutcome.CONFIRMED:
            logger.info("sold %d of %s (reservation %s)", ticket.quantity, stock_item_id, reservation_id)
        elif outcome is ConfirmOutcome.ALREADY_CONFIRMED:
            logger.debug("reservation %s already confirmed", reservation_id)
        else:
            # lapsed: released or expired before payment, the copies already went back
            # to the pool. unknown: never stored or long purged. Counters stay put.
            state = ticket.state.value if ticket else "unknown"
            logger.warning(
                "payment confirmed on %s reservation %s for %s, needs reconciliation",
                state, reservation_id, stock_item_id,
            )
            self.dead_letters.enqueue(
                queue_name=RECONCILE_QUEUE,
                operation="lapsed_confirmation",
                holder_id=holder_id or (ticket.holder_id if ticket else None),
                payload={
                    "stock_item_id": stock_item_id,
                    "quantity": ticket.quantity if ticket else quantity,
                    "reservation_id": reservation_id,
                    "state": state,
                },
                error="reservation not active at confirmation",
                max_retries=0,
            )

    async def _confirm_untracked(self, sale: dict) -> None:
        """Sell sale["quantity"] copies, drawing on the holder's holds first.

        sale["quantity"] counts down as copies are sold, so after a failure
        it holds only what is still unsold. A hold bigger than what is left
        is released rather than confirmed, and the rest sold outright.
        """
        stock_item_id, holder_id = sale["stock_item_id"], sale["holder_id"]
        requested = sale["quantity"]
        from_holds = 0
        if holder_id:
            holds = await self._store_call(
                self.store.active_holds, stock_item_id, holder_id, read=True
            )
            now = self.clock()
            for hold in holds:
                if sale["quantity"] <= 0:
                    break
                if hold.quantity > sale["quantity"]:
                    await self._store_call(self.store.close, hold.id, ReservationState.RELEASED, now)
                    continue
                outcome, ticket = await self._store_call(self.store.confirm, hold.id, now)
                if outcome is ConfirmOutcome.CONFIRMED:
                    sale["quantity"] -= ticket.quantity
                    from_holds += ticket.quantity
        if sale["quantity"] > 0:
            await self._store_call(self.store.sell_untracked, stock_item_id, sale["quantity"])
            sale["quantity"] = 0
        logger.info(
            "sold %d of %s without a ticket (%d from holds)", requested, stock_item_id, from_holds
        )

    async def holds(self, stock_item_id: str, holder_id: str) -> list[ReservationTicket]:
        """Active holds of holder_id on one item, oldest first.

        Empty when the store cannot be read; callers treat that the same
        as a cart line running on untracked holds.
        """
        try:
            return await self._store_call(
                self.store.active_holds, stock_item_id, holder_id, read=True
            )
        except (BackendUnavailable, StockItemNotFound) as exc:
            logger.warning("could not list holds of %s on %s: %s", holder_id, stock_item_id, exc)
            return []

    # -- availability --

    async def check_availability(self, stock_item_id: str, quantity: int = 1) -> Availability:
        """Read-only availability for display. Reserves nothing."""
        try:
            level = await self._store_call(self.store.get_level, stock_item_id, read=True)
        except (BackendUnavailable, StockItemNotFound) as exc:
            logger.warning("availability lookup failed for %s: %s", stock_item_id, exc)
            if self.fail_open:
                return Availability(available=True, on_hand=None, reserved=None, degraded=True)
            return Availability(
                available=False,
                on_hand=None,
                reserved=None,
                message="Availability is temporarily unknown. Please try again shortly.",
                degraded=True,
            )

        stock = check_stock_availability(level.on_hand, level.reserved, quantity)
        low = check_low_stock(level.on_hand, level.reserved, self.config.low_stock_threshold)
        return Availability(
            available=stock.passed,
            on_hand=level.on_hand,
            reserved=level.reserved,
            message=None if stock.passed else stock.message,
            low_stock=not low.passed,
        )

    # -- sweep --

    async def sweep_expired(self, now: datetime | None = None) -> SweepReport:
        """Expire overdue holds, retry parked calls, purge old tombstones and resolved letters."""
        now = now or self.clock()
        report = SweepReport()

        try:
            due = await self._store_call(
                self.store.expired, now, self.config.sweep_batch_size, read=True
            )
        except BackendUnavailable as exc:
            logger.warning("sweep could not list expired holds: %s", exc)
            report.errors.append(str(exc))
            due = []

        for ticket in due:
            returned = await self._close(
                ticket.stock_item_id, ticket.quantity, ticket.id, ticket.holder_id,
                ReservationState.EXPIRED,
            )
            if returned:
                report.expired += 1
                report.units_returned += returned

        report.retried = await self.retry_dead_letters()
        report.letters_purged = self.dead_letters.purge_resolved()

        cutoff = now - timedelta(hours=self.config.tombstone_retention_hours)
        try:
            report.purged = await self._store_call(self.store.purge, cutoff)
        except BackendUnavailable as exc:
            report.errors.append(str(exc))

        if report.expired or report.retried or report.purged:
            logger.info(
                "sweep: expired=%d units=%d retried=%d purged=%d",
                report.expired, report.units_returned, report.retried, report.purged,
            )
        return report

    async def retry_dead_letters(self) -> int:
        """Replay parked release/confirm calls. Returns how many succeeded."""
        return await self.dead_letters.replay(
            RETRY_QUEUE,
            self._replay_letter,
            retry_on=(BackendUnavailable, StockItemNotFound),
            resolved_by="sweeper",
        )

    async def _replay_letter(self, letter) -> None:
        payload = letter.payload
        if letter.operation == "confirm_purchase":
            if payload["reservation_id"] and not is_untracked(payload["reservation_id"]):
                await self._confirm_ticket(
                    payload["stock_item_id"], payload["quantity"],
                    payload["reservation_id"], payload["holder_id"],
                )
            else:
                await self._confirm_untracked(payload)
            return
        state = ReservationState.EXPIRED if letter.operation == "expire" else ReservationState.RELEASED
        await self._replay_close(payload, state)

    async def _replay_close(self, payload: dict, state: ReservationState) -> None:
        now = self.clock()
        if payload["reservation_id"]:
            await self._store_call(self.store.close, payload["reservation_id"], state, now)
            return
        if payload["holder_id"]:
            holds = await self._store_call(
                self.store.active_holds, payload["stock_item_id"], payload["holder_id"], read=True
            )
            for hold in holds:
                await self._store_call(self.store.close, hold.id, state, now)
