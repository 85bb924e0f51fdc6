"""SQLAlchemy models for the storefront.

Each model inherits from Base and uses AuditMixin for its key and
timestamps. The to_dict() method provides a standard serialisation interface
used by repositories and routers.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import AuditMixin, Base
from patterns.workflow_states import ReservationState


def _money(value: Decimal | None) -> str | None:
    return f"{value:.2f}" if value is not None else None


class StockItem(AuditMixin, Base):
    """A sellable title with its physical copy counters.

    on_hand_count and reserved_count are written only by the inventory
    reservation service.
    """

    __tablename__ = "stock_items"
    __table_args__ = (
        CheckConstraint("on_hand_count >= 0", name="ck_stock_on_hand_nonneg"),
        CheckConstraint("reserved_count >= 0", name="ck_stock_reserved_nonneg"),
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    isbn: Mapped[str | None] = mapped_column(String(13), unique=True, nullable=True)
    format: Mapped[str] = mapped_column(String(20), nullable=False, default="Paperback")
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    on_hand_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def available_count(self) -> int:
        return self.on_hand_count - self.reserved_count

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "format": self.format,
            "price": _money(self.price),
            "on_hand_count": self.on_hand_count,
            "reserved_count": self.reserved_count,
            "available_count": self.available_count,
        }


class Reservation(AuditMixin, Base):
    """A time-bounded hold against a stock item.

    Only rows in the ``created`` state count toward reserved_count; the
    other states are tombstones kept until the sweeper purges them.
    """

    __tablename__ = "inventory_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_reservations_state_expires", "state", "expires_at"),
        Index("ix_reservations_holder_item", "holder_id", "stock_item_id"),
    )

    stock_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("stock_items.id"), nullable=False, index=True
    )
    holder_id: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReservationState.CREATED.value
    )
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "stock_item_id": str(self.stock_item_id),
            "holder_id": self.holder_id,
            "quantity": self.quantity,
            "state": self.state,
            "reserved_at": self.reserved_at.isoformat() if self.reserved_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class CartItem(AuditMixin, Base):
    """One line of a holder's cart: a physical book or a synthetic gift card."""

    __tablename__ = "cart_items"

    holder_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="book")
    stock_item_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("stock_items.id"), nullable=True
    )
    isbn: Mapped[str | None] = mapped_column(String(13), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_physical(self) -> bool:
        return self.kind == "book"

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "kind": self.kind,
            "stock_item_id": str(self.stock_item_id) if self.stock_item_id else None,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "unit_price": _money(self.unit_price),
            "quantity": self.quantity,
            "line_total": _money(self.line_total),
            "recipient_name": self.recipient_name,
        }


class Order(AuditMixin, Base):
    """A completed, paid order."""

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    holder_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="confirmed")
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    shipping: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="credit_card")
    payment_id: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "order_number": self.order_number,
            "holder_id": self.holder_id,
            "email": self.email,
            "status": self.status,
            "subtotal": _money(self.subtotal),
            "tax": _money(self.tax),
            "shipping": _money(self.shipping),
            "discount": _money(self.discount),
            "total": _money(self.total),
            "payment_method": self.payment_method,
            "payment_id": self.payment_id,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
        }


class OrderItem(AuditMixin, Base):
    """A line of a completed order."""

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id"), nullable=False, index=True
    )
    stock_item_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    isbn: Mapped[str | None] = mapped_column(String(13), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    author: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    extended_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    order: Mapped["Order"] = relationship(back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "stock_item_id": str(self.stock_item_id) if self.stock_item_id else None,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "extended_price": _money(self.extended_price),
        }
