"""Bookworm storefront API: FastAPI entry point.

Registers middleware, routers, error mapping and lifecycle hooks. The
expiry sweeper runs inside this process for as long as the app is up.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware import HolderMiddleware
from core.database import close_db, init_db
from core.logging_config import get_logger, setup_logging
from storefront.config import config
from storefront.dependencies import get_idempotency_store, get_inventory_service
from storefront.errors import (
    BackendUnavailable,
    CartError,
    InsufficientStock,
    StockItemNotFound,
)
from storefront.sweeper import ExpirySweeper

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
DEBUG = os.getenv("DEBUG", "true").lower() == "true"
CREATE_TABLES = os.getenv("CREATE_TABLES", "false").lower() == "true"

setup_logging()
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    if CREATE_TABLES:
        await init_db()

    sweeper = None
    if config.enable_sweeper:
        inventory = app.dependency_overrides.get(get_inventory_service, get_inventory_service)()
        idempotency = app.dependency_overrides.get(get_idempotency_store, get_idempotency_store)()
        sweeper = ExpirySweeper(inventory, config.reservation.sweep_interval_seconds, idempotency)
        sweeper.start()
    app.state.sweeper = sweeper

    logger.info("storefront API started (degraded mode: %s)", config.reservation.degraded_mode_policy.value)
    yield
    logger.info("storefront API shutting down")

    if sweeper is not None:
        await sweeper.stop()
    await close_db()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Bookworm Storefront",
    description="Online bookstore storefront with inventory reservations",
    version="0.1.0",
    debug=DEBUG,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Holder identity middleware
app.add_middleware(HolderMiddleware)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(InsufficientStock)
async def insufficient_stock_handler(request: Request, exc: InsufficientStock):
    return JSONResponse(status_code=409, content=exc.to_dict())


@app.exception_handler(BackendUnavailable)
async def backend_unavailable_handler(request: Request, exc: BackendUnavailable):
    return JSONResponse(
        status_code=503,
        content={"error": "inventory_unavailable", "message": "Inventory is temporarily unavailable"},
    )


@app.exception_handler(StockItemNotFound)
async def stock_item_not_found_handler(request: Request, exc: StockItemNotFound):
    return JSONResponse(status_code=404, content={"error": "not_found", "message": str(exc)})


@app.exception_handler(CartError)
async def cart_error_handler(request: Request, exc: CartError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "message": str(exc)},
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

from storefront.router import router as storefront_router  # noqa: E402

app.include_router(storefront_router, prefix="/api/storefront", tags=["Storefront"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    inventory = app.dependency_overrides.get(get_inventory_service, get_inventory_service)()
    return {
        "status": "healthy",
        "version": "0.1.0",
        "stock_store": inventory.breaker.state.value,
        "pending_dead_letters": inventory.dead_letters.get_stats().pending,
    }


@app.get("/")
async def root():
    return {
        "name": "Bookworm Storefront",
        "version": "0.1.0",
        "docs": "/docs",
    }
