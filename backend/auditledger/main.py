"""
FastAPI application factory.

Startup sequence:
  1. Validate settings
  2. Check DB connectivity (warn on failure; plan still works without it)
  3. Mount all API routers

Engine errors map to HTTP status codes:
  ValidationError            422
  PolicyConflictError        409
  UnverifiedDependencyError  424
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auditledger.api.v1.health import router as health_router
from auditledger.api.v1.provisioning import router as provisioning_router
from auditledger.core.config import get_settings
from auditledger.core.db import StoreStatus, dispose_engine, store_status
from auditledger.core.errors import (
    PolicyConflictError,
    ProvisioningError,
    UnverifiedDependencyError,
    ValidationError,
)
from auditledger.schemas.common import ErrorResponse

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.is_development else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)

_ERROR_STATUS: dict[type[ProvisioningError], int] = {
    ValidationError: 422,
    PolicyConflictError: 409,
    UnverifiedDependencyError: 424,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting auditledger backend (env=%s, default_backend=%s)",
        settings.environment,
        settings.default_backend,
    )
    store = await store_status()
    if store is StoreStatus.OK:
        logger.info("Provisioning store: OK")
    else:
        logger.warning("Provisioning store: %s, reconcile and records are unavailable", store.value)

    yield

    logger.info("Shutting down auditledger backend")
    await dispose_engine()


def create_app() -> FastAPI:
    app = FastAPI(
        title="AuditLedger — Immutable Storage Provisioning API",
        version="0.1.0",
        description="Resolves audit-log storage requests into WORM resource graphs",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------ #
    # CORS: restrict in production
    # ------------------------------------------------------------------ #
    origins = ["*"] if settings.is_development else [f"https://{settings.environment}.auditledger.internal"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------ #
    # Engine errors
    # ------------------------------------------------------------------ #
    @app.exception_handler(ProvisioningError)
    async def provisioning_error_handler(request: Request, exc: ProvisioningError):
        status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
        logger.warning(
            "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc
        )
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse.from_error(exc).model_dump(),
        )

    # ------------------------------------------------------------------ #
    # Global exception handler
    # ------------------------------------------------------------------ #
    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(health_router)
    app.include_router(provisioning_router, prefix="/api/v1")

    return app


app = create_app()
