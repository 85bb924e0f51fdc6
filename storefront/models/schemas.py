"""Pydantic schemas for API request/response validation."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BookFormat(str, Enum):
    HARDCOVER = "Hardcover"
    PAPERBACK = "Paperback"
    AUDIOBOOK = "Audiobook"


class LineKind(str, Enum):
    BOOK = "book"
    GIFT_CARD = "gift_card"


class DeliveryOption(str, Enum):
    STANDARD = "standard"
    PICKUP = "pickup"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class StockItemCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=200)
    isbn: Optional[str] = Field(None, pattern=r"^\d{10,13}$")
    format: BookFormat = BookFormat.PAPERBACK
    price: Decimal = Field(..., gt=0, decimal_places=2)
    on_hand_count: int = Field(0, ge=0)


class CartItemAdd(BaseModel):
    stock_item_id: str
    quantity: int = Field(1, ge=1)


class GiftCardAdd(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    recipient_name: Optional[str] = Field(None, max_length=200)
    recipient_email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    message: Optional[str] = Field(None, max_length=500)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=0)


class PaymentConfirmation(BaseModel):
    """What the storefront learns once the payment processor reports success."""

    payment_id: str = Field(..., min_length=1, max_length=128)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    delivery_option: DeliveryOption = DeliveryOption.STANDARD


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class AvailabilityResponse(BaseModel):
    available: bool
    on_hand: Optional[int] = None
    reserved: Optional[int] = None
    message: Optional[str] = None
    low_stock: bool = False
    degraded: bool = False


class CartLineResponse(BaseModel):
    id: str
    kind: LineKind
    stock_item_id: Optional[str] = None
    isbn: Optional[str] = None
    title: str
    author: str
    unit_price: str
    quantity: int
    line_total: str
    recipient_name: Optional[str] = None


class CartResponse(BaseModel):
    items: list[CartLineResponse]
    item_count: int
    subtotal: str
    tax: str
    shipping: str
    total: str
