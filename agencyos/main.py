"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from agencyos.core.config import settings
from agencyos.core.middleware import setup_middleware
from agencyos.core.exceptions import (
    AccessError,
    AgencyOSError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from agencyos.services.container import ServiceContainer, build_services

from agencyos.api.me import router as me_router
from agencyos.api.clients import router as clients_router
from agencyos.api.access import router as access_router
from agencyos.api.memory import router as memory_router
from agencyos.api.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("agencyos")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting AgencyOS API")
    services: ServiceContainer = app.state.services

    # Redis check
    if services.cache is not None:
        if services.cache.health_check():
            logger.info("Redis connected")
        else:
            logger.warning("Redis not available, memory list caching disabled")

    if services.memory_service is None:
        logger.info("AI memory disabled")

    yield

    logger.info("Shutting down AgencyOS API")
    if services.memory_service is not None:
        services.memory_service.close()


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application. Tests pass their own container."""
    app = FastAPI(
        title="AgencyOS API",
        description="Multi-tenant agency workspace with role-based access control",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = services or build_services(settings)

    # Middleware
    setup_middleware(app)

    @app.exception_handler(AccessError)
    async def access_exception_handler(request: Request, exc: AccessError):
        return JSONResponse(status_code=exc.kind.status_code, content=exc.to_body())

    @app.exception_handler(AgencyOSError)
    async def agencyos_exception_handler(request: Request, exc: AgencyOSError):
        status_code = 400
        if isinstance(exc, ResourceNotFoundError):
            status_code = 404
        elif isinstance(exc, ResourceConflictError):
            status_code = 409
        return JSONResponse(status_code=status_code, content={"detail": exc.message})

    # Register routers
    app.include_router(me_router, prefix="/api/v1")
    app.include_router(clients_router, prefix="/api/v1")
    app.include_router(access_router, prefix="/api/v1")
    app.include_router(memory_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": "0.1.0",
            "docs": "/docs",
        }

    @app.get("/api/health")
    async def health():
        """Quick health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()
