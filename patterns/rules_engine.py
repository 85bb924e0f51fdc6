"""Pure-function rules engine pattern.

Rules are stateless functions: (entity, context) -> RuleResult.
No database, no side effects. This makes them:
- Trivially testable (pure input/output)
- Auditable (deterministic, explainable)

Domain: stock availability and cart limits for the storefront.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RuleResult:
    """Outcome of a single rule evaluation."""

    passed: bool
    rule_name: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Storefront rules
# ---------------------------------------------------------------------------

def check_stock_availability(on_hand: int, reserved: int, quantity: int = 1) -> RuleResult:
    """Check if enough unreserved copies remain for a request.

    Pure function: takes the two counters + requested quantity.
    """
    available = on_hand - reserved
    passed = available >= quantity

    if passed:
        message = f"In stock: {available} available"
    elif available <= 0:
        message = "This book is currently reserved by other shoppers. Check back soon!"
    else:
        message = f"Only {available} available ({reserved} reserved by other shoppers)"

    return RuleResult(
        passed=passed,
        rule_name="stock_availability",
        message=message,
        details={
            "on_hand": on_hand,
            "reserved": reserved,
            "available": available,
            "requested": quantity,
        },
    )


def check_low_stock(on_hand: int, reserved: int, threshold: int = 2) -> RuleResult:
    """Passes while stock is comfortable; fails when an "Only N left!" badge applies."""
    available = max(0, on_hand - reserved)
    low = 0 < available <= threshold
    return RuleResult(
        passed=not low,
        rule_name="low_stock",
        message=f"Only {available} left!" if low else "Stock level healthy",
        details={"available": available, "threshold": threshold},
    )


def check_hold_expired(expires_at: datetime, now: datetime) -> RuleResult:
    """A hold is expired once the clock reaches its expiry instant."""
    expired = now >= expires_at
    return RuleResult(
        passed=expired,
        rule_name="hold_expired",
        message="Hold expired" if expired else "Hold still active",
        details={"expires_at": expires_at.isoformat(), "now": now.isoformat()},
    )


def check_cart_item_limit(
    current_items: int,
    adding: int,
    max_items: int = 50,
) -> RuleResult:
    """Check a cart stays within the per-order item cap."""
    total = current_items + adding
    passed = total <= max_items
    return RuleResult(
        passed=passed,
        rule_name="cart_item_limit",
        message=(
            f"{total} items in cart"
            if passed
            else f"Orders are limited to {max_items} items ({total} requested)"
        ),
        details={"current": current_items, "adding": adding, "max_items": max_items},
    )


def check_gift_card_amount(
    amount: Decimal,
    min_amount: Decimal = Decimal("5.00"),
    max_amount: Decimal = Decimal("500.00"),
) -> RuleResult:
    """Check a gift card value is within the store's limits."""
    passed = min_amount <= amount <= max_amount
    return RuleResult(
        passed=passed,
        rule_name="gift_card_amount",
        message=(
            "Gift card amount accepted"
            if passed
            else f"Gift cards must be between ${min_amount:.2f} and ${max_amount:.2f}"
        ),
        details={"amount": str(amount)},
    )
