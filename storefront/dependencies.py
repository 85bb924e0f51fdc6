"""Process-wide services and their FastAPI dependency factories.

The reservation service is a singleton: its circuit breaker and dead-letter
queue only make sense when every request shares them. Tests swap it out
through app.dependency_overrides[get_inventory_service].
"""

from functools import lru_cache

from fastapi import Depends

from core.database import async_session_factory
from core.resilience import IdempotencyStore
from storefront.cart import CartService
from storefront.checkout import CheckoutService
from storefront.config import config
from storefront.inventory import InventoryReservationService
from storefront.repository import (
    CartRepository,
    OrderRepository,
    StockItemRepository,
    get_cart_repository,
    get_order_repository,
    get_stock_item_repository,
)
from storefront.sql_store import SqlStockStore


@lru_cache(maxsize=1)
def get_inventory_service() -> InventoryReservationService:
    return InventoryReservationService(
        SqlStockStore(async_session_factory),
        config=config.reservation,
    )


@lru_cache(maxsize=1)
def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore()


def get_cart_service(
    inventory: InventoryReservationService = Depends(get_inventory_service),
    carts: CartRepository = Depends(get_cart_repository),
    catalog: StockItemRepository = Depends(get_stock_item_repository),
) -> CartService:
    return CartService(inventory, carts, catalog, config)


def get_checkout_service(
    inventory: InventoryReservationService = Depends(get_inventory_service),
    carts: CartRepository = Depends(get_cart_repository),
    orders: OrderRepository = Depends(get_order_repository),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
) -> CheckoutService:
    return CheckoutService(inventory, carts, orders, idempotency, config)
