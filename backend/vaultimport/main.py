"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vaultimport.api.exception_handlers import register_exception_handlers
from vaultimport.api.router import api_router
from vaultimport.core.config import settings
from vaultimport.core.logging import get_logger, setup_logging
from vaultimport.db.session import async_session_maker
from vaultimport.services.registry import ServiceRegistry
from vaultimport.workers.manager import start_workers, stop_workers

# Initialize logging
setup_logging()
logger = get_logger(__name__)


async def seed_service_catalog() -> None:
    """Make sure every catalog provider has a row."""
    async with async_session_maker() as db:
        await ServiceRegistry(db).ensure_catalog()
        await db.commit()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events."""
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.version,
        host=settings.host,
        port=settings.port,
        workers_enabled=settings.workers_enabled,
    )
    await seed_service_catalog()

    workers_task: asyncio.Task | None = None
    if settings.workers_enabled:
        workers_task = asyncio.create_task(start_workers(), name="worker-manager")

    yield

    logger.info("shutting_down_application")
    if workers_task is not None:
        await stop_workers()
        try:
            await asyncio.wait_for(workers_task, timeout=35.0)
        except asyncio.TimeoutError:
            logger.warning("worker_manager_shutdown_timeout")
            workers_task.cancel()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Import photo libraries from external providers into the vault without duplicates",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include API routes
    app.include_router(api_router)

    return app


# Create the application instance
app = create_app()


def main() -> None:
    """Run the application with uvicorn."""
    import uvicorn

    uvicorn.run(
        "vaultimport.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
