"""Test the storefront rules, reservation lifecycle and configuration."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from patterns.domain_config import DegradedModePolicy, StorefrontConfig
from patterns.repository import BaseRepository, as_uuid
from patterns.rules_engine import (
    check_cart_item_limit,
    check_gift_card_amount,
    check_hold_expired,
    check_low_stock,
    check_stock_availability,
)
from patterns.workflow_states import (
    ReservationLifecycle,
    ReservationState,
    can_transition,
    is_terminal,
)


def test_stock_availability_messages():
    ok = check_stock_availability(on_hand=5, reserved=1, quantity=2)
    assert ok.passed
    assert ok.details["available"] == 4

    partial = check_stock_availability(on_hand=3, reserved=2, quantity=2)
    assert not partial.passed
    assert partial.message == "Only 1 available (2 reserved by other shoppers)"

    none_left = check_stock_availability(on_hand=2, reserved=2)
    assert not none_left.passed
    assert none_left.message == "This book is currently reserved by other shoppers. Check back soon!"


def test_low_stock_badge():
    assert check_low_stock(10, 0).passed
    assert not check_low_stock(3, 1).passed
    assert check_low_stock(3, 1).message == "Only 2 left!"
    # sold out is not "low"
    assert check_low_stock(2, 2).passed


def test_hold_expiry_boundary():
    start = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    expires = start + timedelta(minutes=30)
    assert not check_hold_expired(expires, start + timedelta(minutes=29, seconds=59)).passed
    assert check_hold_expired(expires, expires).passed


def test_cart_limit_and_gift_cards():
    assert check_cart_item_limit(48, 2).passed
    assert not check_cart_item_limit(49, 2).passed
    assert check_gift_card_amount(Decimal("5.00")).passed
    assert check_gift_card_amount(Decimal("500.00")).passed
    assert not check_gift_card_amount(Decimal("500.01")).passed


def test_reservation_transitions():
    assert can_transition(ReservationState.CREATED, ReservationState.RELEASED)
    assert can_transition(ReservationState.CREATED, ReservationState.CONFIRMED)
    assert can_transition(ReservationState.CREATED, ReservationState.EXPIRED)
    assert not can_transition(ReservationState.RELEASED, ReservationState.CONFIRMED)
    assert not can_transition(ReservationState.EXPIRED, ReservationState.RELEASED)
    assert is_terminal(ReservationState.CONFIRMED)
    assert not is_terminal(ReservationState.CREATED)


def test_lifecycle_records_history():
    lc = ReservationLifecycle(reservation_id="r-1")
    lc.transition(ReservationState.CONFIRMED, actor="checkout")
    assert lc.current_state == ReservationState.CONFIRMED
    assert lc.is_terminal
    assert lc.transition_count == 1
    assert lc.history[0].actor == "checkout"

    with pytest.raises(ValueError, match="Cannot transition"):
        lc.transition(ReservationState.RELEASED)


def test_config_defaults():
    config = StorefrontConfig.default()
    assert config.reservation.hold_minutes == 30
    assert config.reservation.degraded_mode_policy is DegradedModePolicy.FAIL_OPEN
    assert config.pricing.tax_rate == Decimal("8.25")
    assert config.max_items_per_order == 50


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("STOREFRONT_DEGRADED_MODE_POLICY", "FAIL_CLOSED")
    monkeypatch.setenv("STOREFRONT_HOLD_MINUTES", "15")
    monkeypatch.setenv("STOREFRONT_ENABLE_SWEEPER", "false")
    config = StorefrontConfig.from_env()
    assert config.reservation.degraded_mode_policy is DegradedModePolicy.FAIL_CLOSED
    assert config.reservation.hold_minutes == 15
    assert config.reservation.sweep_interval_seconds == 60
    assert config.enable_sweeper is False


def test_base_repository_cannot_rewrite_rows():
    # stock counters change only through the reservation service
    for name in ("update", "delete", "list"):
        assert not hasattr(BaseRepository, name)
    assert as_uuid("not-a-uuid") is None
    assert str(as_uuid("00000000-0000-0000-0000-000000000001")).endswith("1")
