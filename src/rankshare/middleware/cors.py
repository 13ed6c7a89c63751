"""CORS for the web frontend that renders rankings and the reveal view."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rankshare.config import Settings
from rankshare.middleware.request_id import REQUEST_ID_HEADER

EXPOSED_HEADERS = [REQUEST_ID_HEADER, "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def allowed_origins(settings: Settings) -> list[str]:
    """Configured origins plus the frontend that sign-in links point to, without duplicates."""
    origins: list[str] = []
    for origin in [*settings.cors_origins, settings.frontend_base_url]:
        origin = origin.rstrip("/")
        if origin and origin not in origins:
            origins.append(origin)
    return origins


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=EXPOSED_HEADERS,
    )
