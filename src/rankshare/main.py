"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from rankshare.auth.router import router as auth_router
from rankshare.backend import Backend
from rankshare.config import get_settings
from rankshare.health.router import router as health_router
from rankshare.middleware import setup_middleware
from rankshare.profiles.router import router as profiles_router
from rankshare.rankings.router import router as rankings_router
from rankshare.reveal.router import router as reveal_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle.

    A backend handed to ``create_app`` belongs to the caller, who starts and
    closes it. Otherwise one is built here from settings.
    """
    owned = getattr(app.state, "backend", None) is None
    if owned:
        app.state.backend = Backend.from_settings(get_settings())
    backend: Backend = app.state.backend

    if backend.settings.database_create_all:
        await backend.database.create_all()
    if owned:
        await backend.start()
    logger.info("app_started", environment=backend.settings.environment, owned_backend=owned)

    yield

    if owned:
        await backend.close()
        del app.state.backend
    else:
        # Pooled connections belong to the serving event loop.
        await backend.database.dispose()


def create_app(backend: Backend | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = backend.settings if backend is not None else get_settings()

    app = FastAPI(
        title="Rankshare API",
        description="Create, share and reveal rankings",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    if backend is not None:
        app.state.backend = backend

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(profiles_router)
    app.include_router(rankings_router)
    app.include_router(reveal_router)
    app.mount(
        "/storage",
        StaticFiles(directory=Path(settings.storage_root), check_dir=False),
        name="storage",
    )

    return app


app = create_app()
