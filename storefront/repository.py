"""Storefront repositories: async database access.

Extends BaseRepository with catalog search, holder-scoped cart lines and
order lookups. None of these write the stock counters; that is the
reservation service's job.
"""

from uuid import UUID

from fastapi import Depends
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_session
from patterns.repository import BaseRepository, as_uuid
from storefront.models.db_models import CartItem, Order, OrderItem, StockItem


# ---------------------------------------------------------------------------
# Catalog repository
# ---------------------------------------------------------------------------

class StockItemRepository(BaseRepository[StockItem]):
    """Catalog reads and creation of stock items."""

    model = StockItem

    async def search(
        self,
        query: str | None = None,
        author: str | None = None,
        in_stock: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[dict], int]:
        """Search the catalog with filters."""
        stmt = select(StockItem)
        count_stmt = select(func.count()).select_from(StockItem)

        if query:
            pattern = f"%{query}%"
            condition = StockItem.title.ilike(pattern) | StockItem.author.ilike(pattern)
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)

        if author:
            stmt = stmt.where(StockItem.author.ilike(f"%{author}%"))
            count_stmt = count_stmt.where(StockItem.author.ilike(f"%{author}%"))

        if in_stock is True:
            condition = StockItem.on_hand_count - StockItem.reserved_count > 0
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)

        offset = (page - 1) * limit
        stmt = stmt.offset(offset).limit(limit).order_by(StockItem.title)

        result = await self.session.execute(stmt)
        items = [row.to_dict() for row in result.scalars().all()]

        count_result = await self.session.execute(count_stmt)
        total = count_result.scalar() or 0

        return items, total


# ---------------------------------------------------------------------------
# Cart repository
# ---------------------------------------------------------------------------

class CartRepository(BaseRepository[CartItem]):
    """Cart lines, always scoped to one holder."""

    model = CartItem

    async def lines_for(self, holder_id: str) -> list[CartItem]:
        stmt = (
            select(CartItem)
            .where(CartItem.holder_id == holder_id)
            .order_by(CartItem.created_at, CartItem.title)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def line(self, holder_id: str, line_id: str | UUID) -> CartItem | None:
        key = as_uuid(line_id)
        if key is None:
            return None
        stmt = select(CartItem).where(CartItem.id == key, CartItem.holder_id == holder_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def book_line(self, holder_id: str, stock_item_id: UUID) -> CartItem | None:
        stmt = select(CartItem).where(
            CartItem.holder_id == holder_id,
            CartItem.kind == "book",
            CartItem.stock_item_id == stock_item_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_line(self, line: CartItem) -> CartItem:
        self.session.add(line)
        await self.session.flush()
        return line

    async def remove_line(self, line: CartItem) -> None:
        await self.session.delete(line)
        await self.session.flush()

    async def clear(self, holder_id: str) -> int:
        result = await self.session.execute(
            delete(CartItem).where(CartItem.holder_id == holder_id)
        )
        await self.session.flush()
        return result.rowcount or 0


# ---------------------------------------------------------------------------
# Order repository
# ---------------------------------------------------------------------------

class OrderRepository(BaseRepository[Order]):
    """Completed orders."""

    model = Order

    async def by_payment_id(self, payment_id: str) -> Order | None:
        stmt = select(Order).where(Order.payment_id == payment_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def record(self, order: Order, items: list[OrderItem]) -> Order:
        """Insert the order with its lines and commit."""
        order.items = items
        self.session.add(order)
        await self.session.commit()
        return order


# ---------------------------------------------------------------------------
# FastAPI dependency factories
# ---------------------------------------------------------------------------

def get_stock_item_repository(
    session: AsyncSession = Depends(get_session),
) -> StockItemRepository:
    """FastAPI dependency for StockItemRepository."""
    return StockItemRepository(session)


def get_cart_repository(
    session: AsyncSession = Depends(get_session),
) -> CartRepository:
    """FastAPI dependency for CartRepository."""
    return CartRepository(session)


def get_order_repository(
    session: AsyncSession = Depends(get_session),
) -> OrderRepository:
    """FastAPI dependency for OrderRepository."""
    return OrderRepository(session)
