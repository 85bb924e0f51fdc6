"""Checkout completion.

Runs after the payment processor has reported success, so nothing in here
may undo a payment: inventory bookkeeping failures are absorbed by the
reservation service and the order is recorded regardless.
"""

from __future__ import annotations

import time

from core.logging_config import get_logger
from core.resilience import IdempotencyStore, OperationInProgress, generate_idempotency_key
from patterns.domain_config import StorefrontConfig
from storefront.cart import summarize
from storefront.errors import CheckoutInProgress, EmptyCart
from storefront.inventory import InventoryReservationService
from storefront.models.db_models import CartItem, Order, OrderItem
from storefront.models.schemas import DeliveryOption, PaymentConfirmation
from storefront.repository import CartRepository, OrderRepository

logger = get_logger(__name__)

PICKUP_NOTE = "In-store pickup requested"

_DIGITS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_DIGITS[rem])
    return "".join(reversed(out))


def generate_order_number(prefix: str = "CBW", millis: int | None = None) -> str:
    """Order numbers look like CBW-LZ0K3Q9C: the epoch millis in base 36."""
    if millis is None:
        millis = int(time.time() * 1000)
    return f"{prefix}-{to_base36(millis)}"


class CheckoutService:
    """Turns a paid cart into an order and its holds into sales."""

    def __init__(
        self,
        inventory: InventoryReservationService,
        carts: CartRepository,
        orders: OrderRepository,
        idempotency: IdempotencyStore,
        config: StorefrontConfig | None = None,
    ):
        self.inventory = inventory
        self.carts = carts
        self.orders = orders
        self.idempotency = idempotency
        self.config = config or StorefrontConfig.default()

    async def complete(self, holder_id: str, payment: PaymentConfirmation) -> dict:
        """Record the order for a successful payment. Idempotent per payment_id."""
        existing = await self.orders.by_payment_id(payment.payment_id)
        if existing is not None:
            logger.info("payment %s already recorded as %s", payment.payment_id, existing.order_number)
            return existing.to_dict()

        key = generate_idempotency_key("checkout", payment_id=payment.payment_id)
        try:
            return await self.idempotency.run_once(
                key, "checkout", lambda: self._complete(holder_id, payment)
            )
        except OperationInProgress:
            raise CheckoutInProgress(payment.payment_id) from None

    async def _complete(self, holder_id: str, payment: PaymentConfirmation) -> dict:
        lines = await self.carts.lines_for(holder_id)
        if not lines:
            raise EmptyCart()

        pickup = payment.delivery_option is DeliveryOption.PICKUP
        summary = summarize(lines, self.config.pricing, pickup=pickup)

        order = Order(
            order_number=generate_order_number(self.config.order_number_prefix),
            holder_id=holder_id,
            email=payment.email,
            status="confirmed",
            subtotal=summary.subtotal,
            tax=summary.tax,
            shipping=summary.shipping,
            total=summary.total,
            payment_method="credit_card",
            payment_id=payment.payment_id,
            notes=PICKUP_NOTE if pickup else None,
        )
        items = [
            OrderItem(
                stock_item_id=line.stock_item_id,
                isbn=line.isbn,
                title=line.title,
                author=line.author,
                quantity=line.quantity,
                unit_price=line.unit_price,
                extended_price=line.line_total,
            )
            for line in lines
        ]
        # the order is committed before any stock moves
        await self.orders.record(order, items)

        for line in lines:
            if line.is_physical:
                await self._sell_line(holder_id, line)

        await self.carts.clear(holder_id)
        logger.info(
            "order %s recorded for %s: %d items, total %s",
            order.order_number, holder_id, summary.item_count, summary.total,
        )
        return order.to_dict()

    async def _sell_line(self, holder_id: str, line: CartItem) -> None:
        stock_item_id = str(line.stock_item_id)
        sold = 0
        for hold in await self.inventory.holds(stock_item_id, holder_id):
            if sold >= line.quantity:
                await self.inventory.release(stock_item_id, hold.quantity, hold.id, holder_id)
                continue
            await self.inventory.confirm_purchase(stock_item_id, hold.quantity, hold.id, holder_id)
            sold += hold.quantity

        if sold < line.quantity:
            # the rest of the line ran on expired or untracked holds
            await self.inventory.confirm_purchase(stock_item_id, line.quantity - sold)
