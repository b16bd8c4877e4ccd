"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from daswos_autoshop.api.dependencies import get_request_id, get_service
from daswos_autoshop.api.middleware import RequestIDMiddleware, MetricsMiddleware
from daswos_autoshop.api.v1 import autoshop, coins, policy, recommendations
from daswos_autoshop.domain.exceptions import (
    CatalogUnavailableError,
    DomainException,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidKindError,
    InvalidStatusTransitionError,
    LedgerConflictError,
    NoMatchError,
    PaymentSettlementError,
    ProductNotFoundError,
    RecommendationNotFoundError,
    SessionAlreadyActiveError,
    SessionPersistenceError,
    StorageError,
)
from daswos_autoshop.infrastructure.observability.logging import setup_logging
from daswos_autoshop.config import settings

# Setup structured logging
setup_logging(settings.log_level)

# Most specific first; DomainException itself falls through to 500
ERROR_STATUS_CODES = (
    ((InvalidAmountError, InvalidKindError), 400),
    ((PaymentSettlementError,), 402),
    ((ProductNotFoundError, RecommendationNotFoundError, NoMatchError), 404),
    ((InvalidStatusTransitionError, InsufficientBalanceError, LedgerConflictError, SessionAlreadyActiveError), 409),
    ((CatalogUnavailableError, StorageError, SessionPersistenceError), 503),
)


def status_code_for(error: DomainException) -> int:
    for error_types, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_types):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = app.dependency_overrides.get(get_service, get_service)()
    await service.scheduler.resume()
    yield
    await service.scheduler.shutdown()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="DasWos AutoShop",
        description="Autonomous purchasing engine backed by the DasWos Coins ledger",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        status_code = status_code_for(exc)
        log = logging.error if status_code >= 500 else logging.warning
        log(
            f"{type(exc).__name__}: {exc}",
            extra={"request_id": get_request_id(request), "path": request.url.path, "status": status_code},
        )
        if status_code == 503:
            detail = "Upstream service unavailable"
        elif status_code >= 500:
            detail = "Internal server error"
        else:
            detail = str(exc)
        return JSONResponse(status_code=status_code, content={"detail": detail, "error": type(exc).__name__})

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(autoshop.router, prefix="/v1", tags=["autoshop"])
    app.include_router(recommendations.router, prefix="/v1", tags=["recommendations"])
    app.include_router(coins.router, prefix="/v1", tags=["coins"])
    app.include_router(policy.router, prefix="/v1", tags=["policy"])

    return app


app = create_app()
