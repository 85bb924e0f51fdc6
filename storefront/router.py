"""Storefront API router: catalog, cart, checkout and inventory upkeep.

- Catalog reads with availability derived from the reservation counters
- Cart endpoints scoped to the current holder (see api.middleware)
- Checkout completion after the payment processor reported success
- A manual trigger for the expiry sweep

Inventory and cart errors are mapped to responses in api.main.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.middleware import get_current_holder
from core.resilience import IdempotencyStore
from storefront.cart import CartService
from storefront.checkout import CheckoutService
from storefront.dependencies import (
    get_cart_service,
    get_checkout_service,
    get_idempotency_store,
    get_inventory_service,
)
from storefront.inventory import InventoryReservationService
from storefront.models.schemas import (
    AvailabilityResponse,
    CartItemAdd,
    CartItemUpdate,
    CartResponse,
    GiftCardAdd,
    PaymentConfirmation,
    StockItemCreate,
)
from storefront.repository import StockItemRepository, get_stock_item_repository
from storefront.sweeper import ExpirySweeper

router = APIRouter()


# ============================================================================
# Catalog Endpoints
# ============================================================================

@router.get("/books")
async def list_books(
    query: Optional[str] = None,
    author: Optional[str] = None,
    in_stock: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    repo: StockItemRepository = Depends(get_stock_item_repository),
):
    """Search and list books with filtering and pagination."""
    books, total = await repo.search(
        query=query,
        author=author,
        in_stock=in_stock,
        page=page,
        limit=limit,
    )
    return {
        "data": books,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.get("/books/{book_id}")
async def get_book(
    book_id: str,
    repo: StockItemRepository = Depends(get_stock_item_repository),
):
    book = await repo.get(book_id)
    if not book:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.post("/books", status_code=201)
async def create_book(
    request: StockItemCreate,
    repo: StockItemRepository = Depends(get_stock_item_repository),
):
    """Add a book to the catalog with its opening on-hand count."""
    data = request.model_dump()
    data["format"] = request.format.value
    data["reserved_count"] = 0
    return await repo.create(data)


@router.get("/books/{book_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    book_id: str,
    quantity: int = Query(1, ge=1),
    repo: StockItemRepository = Depends(get_stock_item_repository),
    inventory: InventoryReservationService = Depends(get_inventory_service),
):
    """Whether quantity copies could be reserved right now. Reserves nothing."""
    book = await repo.get_model(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    availability = await inventory.check_availability(str(book.id), quantity)
    return availability.to_dict()


# ============================================================================
# Cart Endpoints
# ============================================================================

@router.get("/cart", response_model=CartResponse)
async def get_cart(carts: CartService = Depends(get_cart_service)):
    summary = await carts.get_cart(get_current_holder())
    return summary.to_dict()


@router.post("/cart/items", status_code=201, response_model=CartResponse)
async def add_cart_item(
    request: CartItemAdd,
    carts: CartService = Depends(get_cart_service),
):
    """Reserve copies of a book and add them to the cart."""
    holder_id = get_current_holder()
    await carts.add_item(holder_id, request.stock_item_id, request.quantity)
    summary = await carts.get_cart(holder_id)
    return summary.to_dict()


@router.post("/cart/gift-cards", status_code=201, response_model=CartResponse)
async def add_gift_card(
    request: GiftCardAdd,
    carts: CartService = Depends(get_cart_service),
):
    holder_id = get_current_holder()
    await carts.add_gift_card(
        holder_id,
        request.amount,
        recipient_name=request.recipient_name,
        recipient_email=request.recipient_email,
        message=request.message,
    )
    summary = await carts.get_cart(holder_id)
    return summary.to_dict()


@router.patch("/cart/items/{line_id}", response_model=CartResponse)
async def update_cart_item(
    line_id: str,
    request: CartItemUpdate,
    carts: CartService = Depends(get_cart_service),
):
    """Change a line's quantity. Zero removes the line."""
    holder_id = get_current_holder()
    await carts.update_quantity(holder_id, line_id, request.quantity)
    summary = await carts.get_cart(holder_id)
    return summary.to_dict()


@router.delete("/cart/items/{line_id}", response_model=CartResponse)
async def remove_cart_item(
    line_id: str,
    carts: CartService = Depends(get_cart_service),
):
    holder_id = get_current_holder()
    await carts.remove_item(holder_id, line_id)
    summary = await carts.get_cart(holder_id)
    return summary.to_dict()


@router.delete("/cart")
async def clear_cart(carts: CartService = Depends(get_cart_service)):
    removed = await carts.clear(get_current_holder())
    return {"removed": removed}


# ============================================================================
# Checkout Endpoint
# ============================================================================

@router.post("/checkout", status_code=201)
async def complete_checkout(
    request: PaymentConfirmation,
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Record the order once payment succeeded. Safe to repeat per payment_id."""
    return await checkout.complete(get_current_holder(), request)


# ============================================================================
# Inventory Endpoint
# ============================================================================

@router.post("/inventory/sweep")
async def run_sweep(
    inventory: InventoryReservationService = Depends(get_inventory_service),
    idempotency: IdempotencyStore = Depends(get_idempotency_store),
):
    """Run one expiry sweep now instead of waiting for the background task."""
    report = await ExpirySweeper(inventory, idempotency=idempotency).run_once()
    return report.to_dict()
