"""Custom Middleware"""

import time
import uuid
from typing import Callable, Iterable, Optional
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.logging import get_logger
from app.core.rate_limit import RateLimiter, STANDARD, STRICT, UPLOAD, client_key
from app.schemas.responses import ErrorResponse, ErrorDetail

logger = get_logger(__name__)

# Paths carrying authentication or destructive administrative actions
STRICT_PATH_MARKERS = ("/auth", "/cron", "/pause", "/deactivate", "/reactivate", "/record-paid")
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log request processing time"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(
            f"{request.method} {request.url.path}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "process_time": process_time,
                "correlation_id": getattr(request.state, "request_id", None),
            }
        )

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


def get_client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def select_policy(request: Request) -> str:
    """Pick the rate limit policy for a request."""
    content_type = request.headers.get("content-type", "")
    if request.method in MUTATING_METHODS and content_type.startswith("multipart/form-data"):
        return UPLOAD
    if request.method == "DELETE":
        return STRICT
    path = request.url.path
    if request.method in MUTATING_METHODS and any(marker in path for marker in STRICT_PATH_MARKERS):
        return STRICT
    return STANDARD


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttle requests per client IP and path; denied requests get 429 with Retry-After"""

    def __init__(self, app: ASGIApp, limiter: RateLimiter, exempt_paths: Iterable[str] = ("/health",)):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = tuple(exempt_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)

        policy = select_policy(request)
        decision = self.limiter.check(client_key(get_client_ip(request), path), policy)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "path": path,
                    "policy": policy,
                    "retry_after": decision.retry_after_seconds,
                    "correlation_id": getattr(request.state, "request_id", None),
                },
            )
            headers = {
                "Retry-After": str(decision.retry_after_seconds),
                "X-RateLimit-Limit": str(decision.limit),
                "X-RateLimit-Remaining": "0",
            }
            if decision.reset_at is not None:
                headers["X-RateLimit-Reset"] = str(int(decision.reset_at))
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=ErrorResponse(
                    error=ErrorDetail(code="RATE_LIMITED", message="Too many requests. Please try again later.")
                ).model_dump(),
                headers=headers,
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
        return response
