"""Holder identity middleware using ContextVar.

Every reservation and cart line belongs to a holder: a signed-in account
when the X-Account-ID header is present, otherwise an anonymous browser
session identified by the bookworm_session_id cookie. The holder ID is
stored in a ContextVar so that any downstream code (routers, services,
log lines) can call get_current_holder() without explicit parameter
passing.
"""

import secrets
import string
import time
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

SESSION_COOKIE = "bookworm_session_id"
ACCOUNT_HEADER = "X-Account-ID"
SESSION_MAX_AGE = 30 * 24 * 3600

_ALPHABET = string.ascii_lowercase + string.digits

# ---------------------------------------------------------------------------
# Context variable: task-safe holder state
# ---------------------------------------------------------------------------

_current_holder: ContextVar[str] = ContextVar("current_holder", default="anonymous")


def get_current_holder() -> str:
    """Return the holder ID for the current request.

    Safe to call from any async context within the request lifecycle::

        holder = get_current_holder()
        cart = await carts.get_cart(holder)
    """
    return _current_holder.get()


def generate_session_id() -> str:
    """session_<epoch millis>_<9 random chars>"""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class HolderMiddleware(BaseHTTPMiddleware):
    """Resolve the holder for each request.

    Priority:
    1. X-Account-ID header (authenticated account)
    2. bookworm_session_id cookie (returning anonymous browser)
    3. A fresh session ID, set as a cookie on the response
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        # 1. Check header
        holder_id = request.headers.get(ACCOUNT_HEADER)

        # 2. Fall back to the session cookie
        new_session = None
        if not holder_id:
            holder_id = request.cookies.get(SESSION_COOKIE)

        # 3. Start a session
        if not holder_id:
            holder_id = new_session = generate_session_id()

        token = _current_holder.set(holder_id)
        try:
            response = await call_next(request)
        finally:
            _current_holder.reset(token)

        if new_session:
            response.set_cookie(
                SESSION_COOKIE,
                new_session,
                max_age=SESSION_MAX_AGE,
                httponly=True,
                samesite="lax",
            )
        return response
