"""FastAPI application for the reconciler API.

Provides the main application instance with routers and exception
handlers that map domain errors to HTTP status codes.
"""

import logging
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("reconciler").setLevel(logging.INFO)
from fastapi.responses import JSONResponse

from reconciler.api.routes import invoices, manifests, processing_errors, returns
from reconciler.config import get_config
from reconciler.db.connection import init_db
from reconciler.db.models import Manifest, ManifestStatus
from reconciler.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    ReconcilerError,
)
from reconciler.services.processing_error_service import load_retry_handlers

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async lifespan: create tables and resolve retry handlers on startup.

    A bad handler path in config fails startup instead of every request.
    """
    global _startup_time
    _startup_time = _time.time()
    init_db()
    app.state.retry_handlers = load_retry_handlers(get_config())
    logger.info("Retry handlers loaded for: %s", [t.value for t in app.state.retry_handlers])
    yield


app = FastAPI(
    title="Reconciler API",
    description="Courier manifest reconciliation for fiscal invoices",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map domain exceptions to HTTP status codes.

    NotFoundError -> 404, ConflictError (incl. InvalidStateTransition) -> 409,
    ValidationError and any other domain error -> 400.
    """
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConflictError):
        status_code = 409
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ReconcilerError)
async def reconciler_error_handler(
    request: Request, exc: ReconcilerError
) -> JSONResponse:
    """Handle ReconcilerError exceptions with consistent format."""
    return JSONResponse(
        status_code=400,
        content={
            "error_code": exc.code,
            "message": exc.message,
            "remediation": exc.remediation,
            "details": exc.details if exc.details else None,
        },
    )


# Include routers
app.include_router(manifests.router, prefix="/api/v1")
app.include_router(processing_errors.router, prefix="/api/v1")
app.include_router(returns.router, prefix="/api/v1")
app.include_router(invoices.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint with system status.

    Returns:
        Dictionary with status, version, uptime and the number of
        manifests currently being processed.
    """
    from reconciler.db.connection import get_db as _get_db

    uptime = int(_time.time() - _startup_time) if _startup_time else 0

    try:
        db = next(_get_db())
        try:
            active = (
                db.query(Manifest)
                .filter(Manifest.status == ManifestStatus.processing.value)
                .count()
            )
        finally:
            db.close()
    except Exception as e:
        logger.warning("Health check could not query manifests: %s", e)
        active = 0

    try:
        version = _pkg_version("manifest-reconciler")
    except Exception:
        version = "unknown"

    return {
        "status": "healthy",
        "version": version,
        "uptime_seconds": uptime,
        "processing_manifests": active,
    }
