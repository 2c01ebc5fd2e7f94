"""FastAPI application for the order service.

Provides the main application instance with routers, middleware,
and exception handlers configured.
"""

import logging
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version
from typing import Any

import stripe
from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("orderflow").setLevel(logging.INFO)
from fastapi.responses import JSONResponse

from orderflow.api.middleware.auth import require_internal_token
from orderflow.api.routes import internal, orders, webhooks
from orderflow.config import AppConfig, load_config, validate_config
from orderflow.db.connection import close_db, init_db
from orderflow.errors import ConflictError, DomainError
from orderflow.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

# Module-level state for health endpoint
_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load configuration, create tables, and dispose the engine on exit."""
    global _startup_time

    # --- Startup ---
    _startup_time = _time.time()
    config = load_config()
    # Fail fast on a malformed internal token
    validate_config(config)
    app.state.config = config

    init_db()
    logger.info(
        "Order service started (payments=%s, webhooks=%s, calendar=%s)",
        config.stripe.payments_enabled,
        config.stripe.webhooks_enabled,
        config.calendar.enabled,
    )

    yield

    # --- Shutdown ---
    close_db()


app = FastAPI(
    title="Orderflow API",
    description="Order intake, scheduling, and paid-order fulfillment",
    version="0.1.0",
    lifespan=lifespan,
)

# Internal job endpoints answer 404 without the internal bearer token.
app.middleware("http")(require_internal_token)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render a DomainError that escaped a route.

    Args:
        request: The incoming request.
        exc: The DomainError exception.

    Returns:
        JSONResponse with the error's mapped status code.
    """
    if isinstance(exc, ConflictError):
        detail: Any = {"message": exc.message, "conflicts": exc.conflicts}
    else:
        detail = exc.message
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


@app.exception_handler(stripe.StripeError)
async def stripe_error_handler(
    request: Request, exc: stripe.StripeError
) -> JSONResponse:
    """Report a payment provider failure as a bad gateway."""
    logger.error(
        "Payment provider error on %s: %s",
        request.url.path,
        sanitize_error_message(str(exc)),
    )
    return JSONResponse(
        status_code=502,
        content={"detail": "Payment provider unavailable"},
    )


# Include routers
app.include_router(orders.router)
app.include_router(webhooks.router)
app.include_router(internal.router)


@app.get("/health")
def health_check() -> dict:
    """Liveness endpoint.

    Returns:
        Dictionary with status, package version, and uptime.
    """
    uptime = int(_time.time() - _startup_time) if _startup_time else 0

    # Version from package metadata (matches pyproject.toml)
    try:
        version = _pkg_version("orderflow")
    except Exception:
        version = "unknown"

    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
    }


@app.get("/readyz")
def readiness_check(request: Request):
    """Dependency-aware readiness check for container deployments."""
    from sqlalchemy import text

    from orderflow.db.connection import get_db_context

    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    checks: dict[str, dict[str, Any]] = {}

    # DB connectivity gate.
    try:
        with get_db_context() as db:
            db.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except Exception as exc:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "uptime_seconds": uptime,
                "checks": {
                    "database": {
                        "status": "error",
                        "message": sanitize_error_message(str(exc)),
                    },
                },
            },
        )

    config: AppConfig | None = getattr(request.app.state, "config", None)
    status = "ready"

    if config is not None and config.stripe.payments_enabled:
        checks["stripe_secret_key"] = {"status": "configured"}
    else:
        checks["stripe_secret_key"] = {
            "status": "degraded",
            "message": "STRIPE_SECRET_KEY not set; paid orders are disabled",
        }
        status = "degraded"

    if config is not None and config.stripe.webhooks_enabled:
        checks["stripe_webhook_secret"] = {"status": "configured"}
    else:
        checks["stripe_webhook_secret"] = {
            "status": "degraded",
            "message": "STRIPE_WEBHOOK_SECRET not set; webhooks are rejected",
        }
        status = "degraded"

    return {
        "status": status,
        "uptime_seconds": uptime,
        "checks": checks,
    }
