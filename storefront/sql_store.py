"""SQLAlchemy stock store.

Every counter change is a single conditional UPDATE executed in the same
transaction as the reservation row it belongs to, so concurrent shoppers
can never both win the last copy:

    UPDATE stock_items
       SET reserved_count = reserved_count + :q
     WHERE id = :id AND on_hand_count - reserved_count >= :q

Reservation state changes are conditional on ``state = 'created'``, which
makes release and confirm exactly-once even when two callers race.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from patterns.workflow_states import ReservationState
from storefront.errors import BackendUnavailable, StockItemNotFound
from storefront.models.db_models import Reservation, StockItem
from storefront.stock_store import (
    ConfirmOutcome,
    ReservationTicket,
    ReserveAttempt,
    StockLevel,
    StockStore,
)

_stock = StockItem.__table__
_holds = Reservation.__table__

_ACTIVE = ReservationState.CREATED.value


def _parse_id(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _floored(column, amount: int):
    return case((column >= amount, column - amount), else_=0)


def _ticket(row) -> ReservationTicket:
    return ReservationTicket(
        id=str(row.id),
        stock_item_id=str(row.stock_item_id),
        holder_id=row.holder_id,
        quantity=row.quantity,
        reserved_at=_aware(row.reserved_at),
        expires_at=_aware(row.expires_at),
        state=ReservationState(row.state),
    )


class SqlStockStore(StockStore):
    """Stock store over the storefront database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as exc:
            raise BackendUnavailable(str(exc)) from exc

    async def _read_level(self, session: AsyncSession, item_id: uuid.UUID, raw_id: str) -> StockLevel:
        result = await session.execute(
            select(_stock.c.on_hand_count, _stock.c.reserved_count).where(_stock.c.id == item_id)
        )
        row = result.one_or_none()
        if row is None:
            raise StockItemNotFound(raw_id)
        return StockLevel(raw_id, row.on_hand_count, row.reserved_count)

    async def _read_hold(self, session: AsyncSession, reservation_id: str):
        hold_id = _parse_id(reservation_id)
        if hold_id is None:
            return None
        result = await session.execute(select(_holds).where(_holds.c.id == hold_id))
        return result.one_or_none()

    async def _return_to_pool(self, session: AsyncSession, stock_item_id, quantity: int) -> None:
        await session.execute(
            update(_stock)
            .where(_stock.c.id == stock_item_id)
            .values(reserved_count=_floored(_stock.c.reserved_count, quantity))
        )

    async def _transition(
        self,
        session: AsyncSession,
        hold_id,
        state: ReservationState,
        closed_at: datetime,
    ) -> bool:
        result = await session.execute(
            update(_holds)
            .where(_holds.c.id == hold_id, _holds.c.state == _ACTIVE)
            .values(state=state.value, closed_at=closed_at)
        )
        return result.rowcount == 1

    # -- reads --

    async def get_level(self, stock_item_id: str) -> StockLevel:
        item_id = _parse_id(stock_item_id)
        if item_id is None:
            raise StockItemNotFound(stock_item_id)
        async with self._transaction() as session:
            return await self._read_level(session, item_id, stock_item_id)

    async def get_reservation(self, reservation_id: str) -> ReservationTicket | None:
        async with self._transaction() as session:
            row = await self._read_hold(session, reservation_id)
            return _ticket(row) if row else None

    async def active_holds(self, stock_item_id: str, holder_id: str) -> list[ReservationTicket]:
        item_id = _parse_id(stock_item_id)
        if item_id is None:
            return []
        async with self._transaction() as session:
            result = await session.execute(
                select(_holds)
                .where(
                    _holds.c.stock_item_id == item_id,
                    _holds.c.holder_id == holder_id,
                    _holds.c.state == _ACTIVE,
                )
                .order_by(_holds.c.reserved_at)
            )
            return [_ticket(row) for row in result.all()]

    async def expired(self, now: datetime, limit: int = 200) -> list[ReservationTicket]:
        async with self._transaction() as session:
            result = await session.execute(
                select(_holds)
                .where(_holds.c.state == _ACTIVE, _holds.c.expires_at <= now)
                .order_by(_holds.c.expires_at)
                .limit(limit)
            )
            return [_ticket(row) for row in result.all()]

    # -- writes --

    async def try_reserve(
        self,
        stock_item_id: str,
        quantity: int,
        holder_id: str,
        reserved_at: datetime,
        expires_at: datetime,
    ) -> ReserveAttempt:
        item_id = _parse_id(stock_item_id)
        if item_id is None:
            raise StockItemNotFound(stock_item_id)
        async with self._transaction() as session:
            result = await session.execute(
                update(_stock)
                .where(
                    _stock.c.id == item_id,
                    _stock.c.on_hand_count - _stock.c.reserved_count >= quantity,
                )
                .values(reserved_count=_stock.c.reserved_count + quantity)
            )
            won = result.rowcount == 1
            level = await self._read_level(session, item_id, stock_item_id)
            if not won:
                return ReserveAttempt(None, level)

            hold = Reservation(
                stock_item_id=item_id,
                holder_id=holder_id,
                quantity=quantity,
                state=_ACTIVE,
                reserved_at=reserved_at,
                expires_at=expires_at,
            )
            session.add(hold)
            await session.flush()
            ticket = ReservationTicket(
                id=str(hold.id),
                stock_item_id=stock_item_id,
                holder_id=holder_id,
                quantity=quantity,
                reserved_at=reserved_at,
                expires_at=expires_at,
            )
            return ReserveAttempt(ticket, level)

    async def close(
        self,
        reservation_id: str,
        state: ReservationState,
        closed_at: datetime,
    ) -> ReservationTicket | None:
        async with self._transaction() as session:
            row = await self._read_hold(session, reservation_id)
            if row is None:
                return None
            if not await self._transition(session, row.id, state, closed_at):
                return None
            await self._return_to_pool(session, row.stock_item_id, row.quantity)
            return replace(_ticket(row), state=state)

    async def confirm(
        self,
        reservation_id: str,
        closed_at: datetime,
    ) -> tuple[ConfirmOutcome, ReservationTicket | None]:
        async with self._transaction() as session:
            row = await self._read_hold(session, reservation_id)
            if row is None:
                return ConfirmOutcome.UNKNOWN, None
            if await self._transition(session, row.id, ReservationState.CONFIRMED, closed_at):
                await session.execute(
                    update(_stock)
                    .where(_stock.c.id == row.stock_item_id)
                    .values(
                        on_hand_count=_floored(_stock.c.on_hand_count, row.quantity),
                        reserved_count=_floored(_stock.c.reserved_count, row.quantity),
                    )
                )
                return ConfirmOutcome.CONFIRMED, replace(
                    _ticket(row), state=ReservationState.CONFIRMED
                )

            # lost the race or already closed: report the state that won
            current = await self._read_hold(session, reservation_id)
            ticket = _ticket(current)
            if ticket.state == ReservationState.CONFIRMED:
                return ConfirmOutcome.ALREADY_CONFIRMED, ticket
            return ConfirmOutcome.LAPSED, ticket

    async def sell_untracked(self, stock_item_id: str, quantity: int) -> None:
        item_id = _parse_id(stock_item_id)
        if item_id is None:
            raise StockItemNotFound(stock_item_id)
        async with self._transaction() as session:
            result = await session.execute(
                update(_stock)
                .where(_stock.c.id == item_id)
                .values(on_hand_count=_floored(_stock.c.on_hand_count, quantity))
            )
            if result.rowcount == 0:
                raise StockItemNotFound(stock_item_id)

    async def purge(self, closed_before: datetime) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                delete(_holds).where(
                    _holds.c.state != _ACTIVE,
                    _holds.c.closed_at < closed_before,
                )
            )
            return result.rowcount or 0
