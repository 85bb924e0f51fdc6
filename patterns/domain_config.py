"""Dataclass-based domain configuration pattern.

The storefront defines its thresholds, limits, and policies as frozen
dataclasses. This gives you:
- Type safety (IDE autocompletion, mypy checking)
- Default values (sensible out-of-the-box)
- Immutability (frozen=True prevents accidental mutation)
- Easy overrides (from env vars)
"""

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum


class DegradedModePolicy(str, Enum):
    """What reserve/check_availability do when the stock store cannot answer."""

    FAIL_OPEN = "fail_open"      # treat as available, risk a rare oversell
    FAIL_CLOSED = "fail_closed"  # treat as unavailable, risk a false "sold out"


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ReservationConfig:
    """Inventory hold lifecycle settings."""

    hold_minutes: int = 30
    degraded_mode_policy: DegradedModePolicy = DegradedModePolicy.FAIL_OPEN
    sweep_interval_seconds: int = 60
    sweep_batch_size: int = 200
    tombstone_retention_hours: int = 24
    low_stock_threshold: int = 2  # "Only N left!" badge
    # store resilience
    store_failure_threshold: int = 5
    store_recovery_seconds: float = 30.0
    store_read_retries: int = 1


@dataclass(frozen=True)
class PricingConfig:
    """Pricing rules and thresholds."""

    tax_rate: Decimal = Decimal("8.25")  # California sales tax, percent
    free_shipping_threshold: Decimal = Decimal("50.00")
    standard_shipping: Decimal = Decimal("5.00")


@dataclass(frozen=True)
class GiftCardConfig:
    """Gift card line limits."""

    min_amount: Decimal = Decimal("5.00")
    max_amount: Decimal = Decimal("500.00")


# ---------------------------------------------------------------------------
# Top-level domain config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StorefrontConfig:
    """Complete configuration for the storefront.

    Usage::

        config = StorefrontConfig.default()
        if config.reservation.degraded_mode_policy is DegradedModePolicy.FAIL_OPEN:
            ...
    """

    reservation: ReservationConfig = field(default_factory=ReservationConfig)
    pricing: PricingConfig = field(default_factory=PricingConfig)
    gift_cards: GiftCardConfig = field(default_factory=GiftCardConfig)

    # Feature flags
    enable_sweeper: bool = True
    max_items_per_order: int = 50
    order_number_prefix: str = "CBW"

    @classmethod
    def default(cls) -> "StorefrontConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "STOREFRONT_") -> "StorefrontConfig":
        """Create config from environment variables.

        Example: STOREFRONT_DEGRADED_MODE_POLICY=fail_closed
        """
        config = cls()

        reservation_overrides = {}
        hold = os.getenv(f"{prefix}HOLD_MINUTES")
        if hold:
            reservation_overrides["hold_minutes"] = int(hold)
        policy = os.getenv(f"{prefix}DEGRADED_MODE_POLICY")
        if policy:
            reservation_overrides["degraded_mode_policy"] = DegradedModePolicy(policy.lower())
        interval = os.getenv(f"{prefix}SWEEP_INTERVAL_SECONDS")
        if interval:
            reservation_overrides["sweep_interval_seconds"] = int(interval)
        if reservation_overrides:
            config = replace(
                config, reservation=replace(config.reservation, **reservation_overrides)
            )

        overrides = {}
        max_items = os.getenv(f"{prefix}MAX_ITEMS_PER_ORDER")
        if max_items:
            overrides["max_items_per_order"] = int(max_items)
        sweeper = os.getenv(f"{prefix}ENABLE_SWEEPER")
        if sweeper:
            overrides["enable_sweeper"] = sweeper.lower() == "true"

        return replace(config, **overrides)
