"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docintake.api.v1 import uploads, worker
from docintake.core.config import settings
from docintake.core.errors import (
    InvalidStateTransition,
    InvariantViolation,
    NotFound,
    TransientConflict,
    UploadError,
)
from docintake.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle hooks."""
    setup_logging("DEBUG" if settings.APP_ENV == "development" else "INFO")
    logger.info("Application starting", env=settings.APP_ENV, dedup=settings.dedup_active)
    yield
    logger.info("Application shutting down")


app = FastAPI(
    title="Document Intake API",
    description="CV upload lifecycle, deduplication and processing hand-off",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error mapping ────────────────────────────────────────
_STATUS_BY_ERROR: dict[type[UploadError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
    TransientConflict: status.HTTP_503_SERVICE_UNAVAILABLE,
    InvariantViolation: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@app.exception_handler(UploadError)
async def upload_error_handler(request: Request, exc: UploadError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error_type=type(exc).__name__, **exc.context())
        detail = "Please retry" if isinstance(exc, TransientConflict) else "Internal error"
    else:
        logger.info("Request rejected", path=request.url.path, error_type=type(exc).__name__, **exc.context())
        detail = exc.message

    headers = {"Retry-After": "1"} if isinstance(exc, TransientConflict) else None
    return JSONResponse(status_code=status_code, content={"detail": detail}, headers=headers)


API_PREFIX = "/api/v1"
app.include_router(uploads.router, prefix=API_PREFIX)
app.include_router(worker.router, prefix=API_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Public health-check endpoint."""
    return {"status": "ok", "env": settings.APP_ENV}
