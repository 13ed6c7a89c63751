"""Middleware registration."""

from fastapi import FastAPI

from rankshare.config import Settings
from rankshare.middleware.cors import setup_cors
from rankshare.middleware.error_handler import setup_error_handlers
from rankshare.middleware.logging import setup_logging
from rankshare.middleware.rate_limit import RateLimitMiddleware
from rankshare.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette executes middleware in reverse-add order (last added = outermost).
    CORS is outermost so it wraps 429 responses from the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_window=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
