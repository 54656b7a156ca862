"""Structured JSON request logging."""

import json
import logging
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Send log records to stdout as bare messages (request logs are JSON)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        stream=sys.stdout,
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one JSON line per request and echoes X-Request-ID.

    An incoming X-Request-ID is reused so callers can correlate a bulk
    action with its per-item requests.

    Fields: request_id, method, path, status_code, processing_time_ms,
    user_ip, plus the workflow action and outcome when a route reports them
    through the ``X-Workflow-Action`` / ``X-Workflow-Outcome`` headers.

    Request and response bodies are never logged; they carry student data
    and signatures.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        log_data: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception as e:
            error_log = {
                **log_data,
                "status_code": 500,
                "processing_time_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(e),
                "error_type": type(e).__name__,
                "message": f"Request failed: {request.method} {request.url.path}",
            }
            logger.error(json.dumps(error_log), exc_info=True)
            raise

        log_data.update({
            "status_code": response.status_code,
            "processing_time_ms": round((time.time() - start_time) * 1000, 2),
        })
        if "X-Workflow-Action" in response.headers:
            log_data["workflow_action"] = response.headers["X-Workflow-Action"]
        if "X-Workflow-Outcome" in response.headers:
            log_data["workflow_outcome"] = response.headers["X-Workflow-Outcome"]

        logger.info(json.dumps(log_data))
        response.headers["X-Request-ID"] = request_id
        return response
