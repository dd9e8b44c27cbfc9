"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from fanclub.billing import reset_payment_service
from fanclub.config import get_settings
from fanclub.database import close_db, create_all, init_db
from fanclub.health.router import router as health_router
from fanclub.middleware import setup_middleware
from fanclub.storage import reset_storage_manager
from fanclub.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.create_tables:
        await create_all()
    logger.info("app_started", environment=settings.environment, version=settings.app_version)

    yield

    await close_db()
    reset_payment_service()
    reset_storage_manager()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="FanClub API",
        description="User accounts for the FanClub creator platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)

    return app


app = create_app()
