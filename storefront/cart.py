"""Cart service.

Every physical line in a cart is backed by one or more reservation holds
owned by the cart's holder. Lines are added only after the hold succeeded,
and every path that shrinks or drops a line gives the copies back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from core.logging_config import get_logger
from patterns.domain_config import PricingConfig, StorefrontConfig
from patterns.rules_engine import check_cart_item_limit, check_gift_card_amount
from storefront.errors import (
    CartLimitExceeded,
    CartLineNotFound,
    InsufficientStock,
    InvalidGiftCard,
    StockItemNotFound,
)
from storefront.inventory import InventoryReservationService
from storefront.models.db_models import CartItem
from storefront.repository import CartRepository, StockItemRepository

logger = get_logger(__name__)

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CartSummary:
    """A holder's cart lines with computed totals."""

    lines: list[CartItem] = field(default_factory=list)
    item_count: int = 0
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    shipping: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self.lines],
            "item_count": self.item_count,
            "subtotal": f"{self.subtotal:.2f}",
            "tax": f"{self.tax:.2f}",
            "shipping": f"{self.shipping:.2f}",
            "total": f"{self.total:.2f}",
        }


def summarize(lines: list[CartItem], pricing: PricingConfig, pickup: bool = False) -> CartSummary:
    """Price a list of cart lines.

    Shipping is free at or above the threshold, for in-store pickup, and
    for an empty cart.
    """
    subtotal = to_cents(sum((line.line_total for line in lines), Decimal("0")))
    tax = to_cents(subtotal * pricing.tax_rate / Decimal("100"))
    if not lines or pickup or subtotal >= pricing.free_shipping_threshold:
        shipping = Decimal("0.00")
    else:
        shipping = to_cents(pricing.standard_shipping)
    return CartSummary(
        lines=lines,
        item_count=sum(line.quantity for line in lines),
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        total=subtotal + tax + shipping,
    )


class CartService:
    """Holder-scoped cart operations on top of the reservation service."""

    def __init__(
        self,
        inventory: InventoryReservationService,
        carts: CartRepository,
        catalog: StockItemRepository,
        config: StorefrontConfig | None = None,
    ):
        self.inventory = inventory
        self.carts = carts
        self.catalog = catalog
        self.config = config or StorefrontConfig.default()

    async def _check_limit(self, holder_id: str, adding: int) -> None:
        lines = await self.carts.lines_for(holder_id)
        result = check_cart_item_limit(
            sum(line.quantity for line in lines), adding, self.config.max_items_per_order
        )
        if not result.passed:
            raise CartLimitExceeded(result.message)

    async def _line(self, holder_id: str, line_id: str) -> CartItem:
        line = await self.carts.line(holder_id, line_id)
        if line is None:
            raise CartLineNotFound(line_id)
        return line

    # -- add --

    async def add_item(self, holder_id: str, stock_item_id: str, quantity: int = 1) -> CartItem:
        """Reserve copies and put them in the cart.

        Raises InsufficientStock with the cart untouched when the copies
        are not free.
        """
        item = await self.catalog.get_model(stock_item_id)
        if item is None:
            raise StockItemNotFound(stock_item_id)
        await self._check_limit(holder_id, quantity)

        await self.inventory.reserve(str(item.id), quantity, holder_id)

        line = await self.carts.book_line(holder_id, item.id)
        if line is not None:
            line.quantity += quantity
            await self.carts.session.flush()
            return line

        return await self.carts.add_line(
            CartItem(
                holder_id=holder_id,
                kind="book",
                stock_item_id=item.id,
                isbn=item.isbn,
                title=item.title,
                author=item.author,
                unit_price=item.price,
                quantity=quantity,
            )
        )

    async def add_gift_card(
        self,
        holder_id: str,
        amount: Decimal,
        recipient_name: str | None = None,
        recipient_email: str | None = None,
        message: str | None = None,
    ) -> CartItem:
        """Add a gift card line. Gift cards are not stocked and hold nothing."""
        limits = self.config.gift_cards
        result = check_gift_card_amount(amount, limits.min_amount, limits.max_amount)
        if not result.passed:
            raise InvalidGiftCard(result.message)
        await self._check_limit(holder_id, 1)

        return await self.carts.add_line(
            CartItem(
                holder_id=holder_id,
                kind="gift_card",
                title=f"${amount:.2f} Gift Card",
                author="",
                unit_price=to_cents(amount),
                quantity=1,
                recipient_name=recipient_name,
                recipient_email=recipient_email,
                message=message,
            )
        )

    # -- change --

    async def update_quantity(self, holder_id: str, line_id: str, quantity: int) -> CartItem | None:
        """Set a line's quantity. Returns None when the line was removed."""
        line = await self._line(holder_id, line_id)
        if quantity < 1:
            await self._drop(holder_id, line)
            return None

        if not line.is_physical:
            line.quantity = quantity
            await self.carts.session.flush()
            return line

        delta = quantity - line.quantity
        if delta > 0:
            await self._check_limit(holder_id, delta)
            await self.inventory.reserve(str(line.stock_item_id), delta, holder_id)
        elif delta < 0:
            line.quantity = await self._shrink_holds(holder_id, line, quantity)
            await self.carts.session.flush()
            return line

        line.quantity = quantity
        await self.carts.session.flush()
        return line

    async def _shrink_holds(self, holder_id: str, line: CartItem, quantity: int) -> int:
        """Release holds newest-first until at most quantity copies stay held.

        Returns the quantity the line ends up with.
        """
        stock_item_id = str(line.stock_item_id)
        holds = await self.inventory.holds(stock_item_id, holder_id)
        excess = sum(hold.quantity for hold in holds) - quantity
        if excess <= 0:
            # the holds already fit (expired or never tracked)
            return quantity

        for hold in reversed(holds):
            if excess <= 0:
                break
            await self.inventory.release(stock_item_id, hold.quantity, hold.id, holder_id)
            excess -= hold.quantity

        shortfall = -excess
        if shortfall > 0:
            try:
                await self.inventory.reserve(stock_item_id, shortfall, holder_id)
            except InsufficientStock:
                logger.warning(
                    "could not re-hold %d of %s for %s after shrinking the line",
                    shortfall, stock_item_id, holder_id,
                )
                return quantity - shortfall
        return quantity

    # -- remove --

    async def _drop(self, holder_id: str, line: CartItem) -> None:
        if line.is_physical:
            await self.inventory.release(
                str(line.stock_item_id), line.quantity, holder_id=holder_id
            )
        await self.carts.remove_line(line)

    async def remove_item(self, holder_id: str, line_id: str) -> None:
        line = await self._line(holder_id, line_id)
        await self._drop(holder_id, line)

    async def clear(self, holder_id: str) -> int:
        """Empty the cart and give every hold back. Returns the lines removed."""
        for line in await self.carts.lines_for(holder_id):
            if line.is_physical:
                await self.inventory.release(
                    str(line.stock_item_id), line.quantity, holder_id=holder_id
                )
        return await self.carts.clear(holder_id)

    # -- read --

    async def get_cart(self, holder_id: str) -> CartSummary:
        lines = await self.carts.lines_for(holder_id)
        return summarize(lines, self.config.pricing)
