"""
Feedback Layer API

Ingests widget feedback, classifies it with a generative-AI model, and
stores it for triage.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from feedback_api.config import get_settings
from feedback_api.middleware import RequestIDMiddleware, SecurityHeadersMiddleware
from feedback_api.models.feedback import ErrorResponse
from feedback_api.routers import feedback
from feedback_api.services.blob_storage import check_storage_connectivity
from feedback_api.services.http_client import close_shared_client
from feedback_api.services.notifications import get_dispatcher

logger = logging.getLogger(__name__)

settings = get_settings()

# Health check cache: (result_dict, timestamp)
_health_cache: tuple[dict[str, Any], float] | None = None
_HEALTH_CACHE_TTL = 30  # seconds


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: flush pending notifications on shutdown."""
    yield
    await get_dispatcher().drain(
        timeout=get_settings().notification_drain_timeout_seconds
    )
    await close_shared_client()


app = FastAPI(
    title="Feedback Layer API",
    description="Feedback ingestion with AI classification",
    version="0.1.0",
    lifespan=lifespan,
)

# Request ID (runs first — outermost middleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# CORS: only origins listed in CORS_ORIGINS may post. The default covers local
# development; deployments must list every site that embeds the widget.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Page-URL", "X-Request-ID"],
)

# Routers
app.include_router(feedback.router, prefix="/api")


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures in the closed error vocabulary."""
    logger.info("Invalid request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="invalid submission").model_dump(),
    )


def _check_config() -> str:
    """Verify required configuration is loaded. Returns 'ok' or 'fail'."""
    s = get_settings()
    if s.azure_storage_connection_string or s.azure_storage_account:
        return "ok"
    return "fail"


def _run_health_checks() -> dict[str, Any]:
    """Run all health checks, returning the full response body."""
    global _health_cache
    now = time.time()
    if _health_cache is not None:
        cached_result, cached_at = _health_cache
        if now - cached_at < _HEALTH_CACHE_TTL:
            return cached_result

    config_status = _check_config()
    storage_status = "ok" if check_storage_connectivity() else "fail"

    checks = {"config": config_status, "storage": storage_status}
    failed = [k for k, v in checks.items() if v != "ok"]

    if failed:
        overall = "degraded"
        logger.warning("Health check degraded — failed: %s", ", ".join(failed))
    else:
        overall = "ok"

    result: dict[str, Any] = {
        "status": overall,
        "service": "feedback-layer-api",
        "version": "0.1.0",
        "checks": checks,
        "classification": "enabled" if get_settings().ai_api_key else "disabled",
    }
    _health_cache = (result, now)
    return result


@app.get("/api/health")
async def health_check() -> JSONResponse:
    """Health check verifying service dependencies."""
    result = await asyncio.to_thread(_run_health_checks)
    status_code = 200 if result["status"] in ("ok", "degraded") else 503
    return JSONResponse(content=result, status_code=status_code)
