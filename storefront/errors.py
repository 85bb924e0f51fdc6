"""Storefront error taxonomy.

InsufficientStock is the only inventory failure a shopper ever sees. The
other inventory errors describe the state of the shared stock store and
are absorbed by the reservation service according to its degraded-mode
policy. CartError subclasses carry the HTTP status the router returns.
"""


class InventoryError(Exception):
    """Base class for inventory reservation failures."""


class InsufficientStock(InventoryError):
    """The requested quantity exceeds what is not already held."""

    def __init__(self, available: int, reserved: int, requested: int = 0):
        self.available = max(0, available)
        self.reserved = reserved
        self.requested = requested
        super().__init__(
            f"Only {self.available} copies available. "
            f"{reserved} are reserved by other shoppers."
        )

    def to_dict(self) -> dict:
        return {
            "error": "insufficient_stock",
            "message": str(self),
            "available": self.available,
            "reserved": self.reserved,
            "requested": self.requested,
        }


class BackendUnavailable(InventoryError):
    """The stock store could not be reached or rejected the call."""


class StockItemNotFound(InventoryError):
    """No stock row exists for the identifier."""

    def __init__(self, stock_item_id: str):
        self.stock_item_id = stock_item_id
        super().__init__(f"Stock item not found: {stock_item_id}")


# ---------------------------------------------------------------------------
# Cart and checkout
# ---------------------------------------------------------------------------

class CartError(Exception):
    """A cart request the storefront refuses. Mapped to a 4xx response."""

    status_code = 400


class CartLineNotFound(CartError):
    status_code = 404

    def __init__(self, line_id: str):
        self.line_id = line_id
        super().__init__(f"Cart line not found: {line_id}")


class CartLimitExceeded(CartError):
    status_code = 422


class InvalidGiftCard(CartError):
    status_code = 422


class EmptyCart(CartError):
    status_code = 400

    def __init__(self):
        super().__init__("Cart is empty")


class CheckoutInProgress(CartError):
    status_code = 409

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Checkout for payment {payment_id} is already being processed")
