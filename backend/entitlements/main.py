"""Lumenslate Entitlements — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from entitlements.api.v1.subscriptions import router as subscriptions_router
from entitlements.api.v1.usage import router as usage_router
from entitlements.api.v1.usage_limits import router as usage_limits_router
from entitlements.config import Settings, get_settings
from entitlements.database import create_schema
from entitlements.exceptions import EntitlementsError
from entitlements.services.container import build_container

logger = logging.getLogger(__name__)

# HTTP status for each error kind; unknown kinds are server errors
ERROR_STATUS_CODES: dict[str, int] = {
    "validation_error": 422,
    "not_found": 404,
    "plan_not_found": 404,
    "invalid_transition": 409,
    "conflict": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    settings: Settings = app.state.settings
    # Startup
    services = build_container(settings)
    if settings.is_sqlite:
        await create_schema(services.engine)
    app.state.services = services
    logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.environment)
    yield
    # Shutdown: dispose engine connections
    await services.dispose()


async def entitlements_error_handler(request: Request, exc: EntitlementsError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("Unhandled %s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Subscription lifecycle, plan limits and usage metering for Lumenslate.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(EntitlementsError, entitlements_error_handler)

    # Routers
    app.include_router(subscriptions_router)
    app.include_router(usage_limits_router)
    app.include_router(usage_router)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/", tags=["root"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "docs": "/docs",
        }

    return app


# Configure root logger so all entitlements.* loggers output to stderr.
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()
