"""FastAPI application for the marksheet dispatch service."""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Union

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded  # type: ignore[import-not-found]

from marksheet_dispatch.config import get_settings
from marksheet_dispatch.db.supabase_client import get_supabase_client
from marksheet_dispatch.middleware.logging import RequestLoggingMiddleware, configure_logging
from marksheet_dispatch.middleware.rate_limit import get_limiter, rate_limit_exceeded_handler
from marksheet_dispatch.routers import examinations, marksheets

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
COMMIT_HASH = "development"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate configuration on startup."""
    try:
        settings = get_settings()
        configure_logging(settings.log_level)
        logger.info(f"Starting Marksheet Dispatch API v{VERSION}")
        logger.info(f"Delivery channel configured: {bool(settings.delivery_endpoint_url)}")
        logger.info(f"Bulk concurrency limit: {settings.bulk_concurrency_limit or 'unbounded'}")
    except Exception as e:
        logger.error(f"Startup validation failed: {e}")
        raise

    yield

    logger.info("Shutting down Marksheet Dispatch API")


app = FastAPI(
    title="Marksheet Dispatch API",
    description="Marksheet verification, HOD approval and parent dispatch workflow",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = get_limiter()
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=None)
async def health_check() -> Union[Dict[str, Any], Response]:
    """
    Health check endpoint that verifies the database is reachable.

    Status Codes:
        200: All services healthy
        503: One or more services unavailable
    """
    services: Dict[str, str] = {}
    overall_healthy = True

    try:
        supabase_client = get_supabase_client()
        response = supabase_client.table("marksheets").select("id").limit(1).execute()
        if response is not None:
            services["supabase"] = "healthy"
        else:
            services["supabase"] = "unhealthy: no response"
            overall_healthy = False
    except Exception as e:
        services["supabase"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    services["delivery"] = "configured" if get_settings().delivery_endpoint_url else "not configured"

    response_data: Dict[str, Any] = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": services,
    }
    if not overall_healthy:
        return Response(
            content=json.dumps(response_data),
            status_code=503,
            media_type="application/json",
        )
    return response_data


@app.get("/version")
async def version_info() -> Dict[str, str]:
    return {
        "version": VERSION,
        "commit_hash": COMMIT_HASH,
    }


app.include_router(marksheets.router)
app.include_router(examinations.router)
