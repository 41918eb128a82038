"""
HTTP middleware and exception handlers

Request order through the stack built by ``setup_middleware``:

    SecurityHeaders -> CorrelationId -> RequestLogging -> WebhookRateLimit -> routes

Every error body uses the ``{"error": {"code", "message", "details"}}``
envelope of ``AppException.to_dict`` and carries ``X-Correlation-ID``.
"""
import math
import time
from collections import defaultdict, deque
from typing import Any, Callable, Mapping, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import AppException, ErrorCode
from app.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# Agent webhooks may carry the shared secret as ?secret=
_MASKED_QUERY_PARAMS = frozenset({"secret", "token", "key"})

_BASE_SECURITY_HEADERS = {"X-Content-Type-Options": "nosniff"}
# Breaks plain-HTTP local development, so only sent outside DEBUG
_TLS_SECURITY_HEADERS = {
    "Content-Security-Policy": "upgrade-insecure-requests",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _mask_query_params(query_params: Mapping[str, str]) -> dict[str, str]:
    return {
        name: "***" if name.lower() in _MASKED_QUERY_PARAMS else value
        for name, value in query_params.items()
    }


def _error_response(
    status_code: int,
    body: dict[str, Any],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id(), **(headers or {})},
    )


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Adopts the caller's X-Correlation-ID or mints one, and echoes it back"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id
        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        fields = {"method": request.method, "path": request.url.path}
        label = f"{request.method} {request.url.path}"

        logger.info(
            f"Request started: {label}",
            extra_data={
                **fields,
                "query_params": _mask_query_params(request.query_params),
                "client_host": _client_ip(request),
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            fields["duration_seconds"] = round(time.perf_counter() - started, 4)
            logger.error(f"Request failed: {label}", extra_data={**fields, "error": str(e)}, exc_info=True)
            raise

        fields["status_code"] = response.status_code
        fields["duration_seconds"] = round(time.perf_counter() - started, 4)
        log = logger.info if response.status_code < 400 else logger.warning
        log(f"Request completed: {label}", extra_data=fields)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._headers = dict(_BASE_SECURITY_HEADERS)
        if not debug:
            self._headers.update(_TLS_SECURITY_HEADERS)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self._headers)
        return response


class SlidingWindowLimiter:
    """
    At most ``max_requests`` hits per key within any ``window_seconds`` span.

    State lives in process memory, so each API instance limits on its own.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _prune(self, key: str, now: float) -> None:
        hits = self._hits.get(key)
        if hits is None:
            return
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]

    def hit(self, key: str) -> Optional[int]:
        """
        Count a request for ``key``.

        Returns None when the request is allowed, otherwise the whole number
        of seconds until the oldest hit leaves the window. Rejected requests
        are not counted.
        """
        now = self._clock()
        self._prune(key, now)
        hits = self._hits[key]
        if len(hits) >= self.max_requests:
            return max(1, math.ceil(hits[0] + self.window_seconds - now))
        hits.append(now)
        return None

    def tracked_keys(self) -> int:
        """Keys with at least one hit still inside the window"""
        now = self._clock()
        for key in list(self._hits):
            self._prune(key, now)
        return len(self._hits)


class WebhookRateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP limit on paths containing ``/webhook``; other paths pass through"""

    def __init__(
        self,
        app: FastAPI,
        *,
        max_requests: int = 100,
        window_seconds: int = 60,
        limiter: Optional[SlidingWindowLimiter] = None,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter or SlidingWindowLimiter(max_requests, window_seconds)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if "/webhook" not in request.url.path:
            return await call_next(request)

        client_ip = _client_ip(request)
        retry_after = self.limiter.hit(client_ip)
        if retry_after is None:
            return await call_next(request)

        logger.warning(
            "Rate limit exceeded for webhook",
            extra_data={
                "client_ip": client_ip,
                "path": request.url.path,
                "limit": self.limiter.max_requests,
                "window_seconds": self.limiter.window_seconds,
                "retry_after_seconds": retry_after,
            },
        )
        body = {
            "error": {
                "code": ErrorCode.RATE_LIMITED.value,
                "message": "Too many requests. Please try again later.",
                "details": {"retry_after_seconds": retry_after},
            }
        }
        return _error_response(429, body, {"Retry-After": str(retry_after)})


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        },
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(exc.status_code, exc.to_dict(), headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Logs the full exception; the client only sees a generic ERR_1000 body"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True,
    )
    body = {
        "error": {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "An unexpected error occurred",
            "details": {},
        }
    }
    return _error_response(500, body)


def setup_middleware(app: FastAPI) -> None:
    from app.core.config import settings

    # add_middleware wraps, so the last one added sees the request first
    app.add_middleware(
        WebhookRateLimitMiddleware,
        max_requests=settings.WEBHOOK_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
