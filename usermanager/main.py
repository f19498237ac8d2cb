"""usermanager - FastAPI Application Factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from usermanager.api import auth_router, health_router
from usermanager.api.error_handling import register_exception_handlers
from usermanager.core import dispose_engine, settings, setup_logging
from usermanager.core.logging import get_logger
from usermanager.middleware import BearerAuthMiddleware, SecurityHeadersMiddleware

# Import all models to ensure they're registered with Base for Alembic
from usermanager.models import Permission, Role, User  # noqa: F401
from usermanager.services.kv_store import RedisKeyValueStore
from usermanager.services.security import SecurityContext

logger = get_logger("main")

BLACKLIST_MAINTENANCE_INTERVAL = 3600


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background task {task.get_name()} failed: {exc}")


async def _blacklist_maintenance_loop(security: SecurityContext) -> None:
    """Periodically publish the token blacklist size.

    Entries expire on their own through store TTLs; this only reports.
    """
    while True:
        await asyncio.sleep(BLACKLIST_MAINTENANCE_INTERVAL)
        try:
            await security.revocation.report_size()
        except Exception:
            logger.exception("Error during token blacklist maintenance")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    security = SecurityContext.get_instance()
    if isinstance(security.store, RedisKeyValueStore):
        try:
            await asyncio.to_thread(security.store.verify_connection)
            logger.info("Redis connection verified")
        except Exception as e:
            # Requests fail closed or open per policy until Redis is reachable
            logger.error(f"Redis not reachable at startup: {e}")

    maintenance_task = asyncio.create_task(_blacklist_maintenance_loop(security))
    maintenance_task.add_done_callback(task_done_callback)

    yield

    logger.info("Shutting down...")
    maintenance_task.cancel()
    try:
        await maintenance_task
    except asyncio.CancelledError:
        pass
    await security.close()
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="User management authentication and session revocation service",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    register_exception_handlers(app)

    # Starlette runs middleware in reverse order of addition: CORS, headers, bearer auth
    app.add_middleware(BearerAuthMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "Accept",
            "X-Request-ID",
            "X-Session-ID",
        ],
    )

    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(health_router)
    app.include_router(auth_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
