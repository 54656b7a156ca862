"""Rate limiting with slowapi."""

import json

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from marksheet_dispatch.config import get_settings


def get_client_ip(request: Request) -> str:
    """
    Get the client IP address from the request.

    X-Forwarded-For is only honoured when the direct peer is one of the
    configured trusted proxies.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address string
    """
    direct_ip: str = get_remote_address(request)

    settings = get_settings()
    if not settings.trusted_proxies:
        return direct_ip

    trusted_proxy_list = [
        ip.strip() for ip in settings.trusted_proxies.split(",")
        if ip.strip()
    ]
    if direct_ip in trusted_proxy_list:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

    return direct_ip


limiter = Limiter(key_func=get_client_ip, default_limits=["200/minute"])

RATE_LIMITS = {
    "reads": "100/minute",       # GET /api/marksheets, /api/examinations
    "transitions": "60/minute",  # POST /api/marksheets/{id}/*
    "bulk": "10/minute",         # POST /api/marksheets/bulk/*
    "dispatch": "30/minute",     # POST /api/marksheets/{id}/dispatch (external delivery)
}


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Return 429 with Retry-After and X-RateLimit-* headers.

    Args:
        request: FastAPI request object
        exc: RateLimitExceeded exception with limit details

    Returns:
        Response with 429 status code and rate limit headers
    """
    retry_after = getattr(exc, "retry_after", 60)

    error_body = {
        "detail": "Rate limit exceeded",
        "message": f"Too many requests. Please retry after {retry_after} seconds.",
        "retry_after": retry_after,
    }
    response = Response(
        content=json.dumps(error_body),
        status_code=429,
        media_type="application/json",
    )
    response.headers["Retry-After"] = str(retry_after)
    response.headers["X-RateLimit-Remaining"] = "0"
    if getattr(exc, "detail", None):
        response.headers["X-RateLimit-Limit"] = exc.detail
    return response


def get_limiter() -> Limiter:
    return limiter
