"""
Request logging middleware.

Each request gets a correlation ID, taken from an incoming ``X-Request-ID``
header when the caller supplies one. The ID is published through
``request_id_var`` so log records written by services and the sweep carry it.
"""

import logging
import time
import contextvars
from typing import Dict, Iterable, Optional
from uuid import uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="no-request-id")

# Health checks and docs are logged at DEBUG
QUIET_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})

SLOW_REQUEST_SECONDS = 2.0

DEFAULT_MASKED_HEADERS = ("authorization", "cookie", "x-api-key")


def client_address(request: Request) -> str:
    """Best guess at the caller's address behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.headers.get("x-real-ip"):
        return request.headers["x-real-ip"]
    return request.client.host if request.client else "unknown"


def mask_headers(headers: Dict[str, str], masked: Iterable[str]) -> Dict[str, str]:
    """Copy headers with credentials hidden. Bearer tokens keep their last 4 chars."""
    masked = {name.lower() for name in masked}
    cleaned = {}
    for name, value in headers.items():
        if name.lower() not in masked:
            cleaned[name] = value
        elif value.startswith("Bearer "):
            cleaned[name] = f"Bearer ***{value[-4:]}"
        else:
            cleaned[name] = "***"
    return cleaned


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every API call and tags the response with its request ID."""

    def __init__(
        self,
        app,
        log_requests: bool = True,
        log_responses: bool = True,
        sensitive_headers: Optional[list] = None
    ):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.sensitive_headers = tuple(sensitive_headers or DEFAULT_MASKED_HEADERS)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()

        try:
            if self.log_requests:
                self._log_incoming(request)

            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
                    extra={
                        "exception_type": type(exc).__name__,
                        "process_time": time.perf_counter() - started,
                        "method": request.method,
                        "path": request.url.path,
                    },
                    exc_info=True
                )
                raise

            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{elapsed:.4f}"

            if self.log_responses:
                self._log_outgoing(request, response, elapsed)
            return response
        finally:
            request_id_var.reset(token)

    def _log_incoming(self, request: Request) -> None:
        context = {
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
            "client_ip": client_address(request),
            "headers": mask_headers(dict(request.headers), self.sensitive_headers),
        }
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO
        logger.log(level, f"{request.method} {request.url.path}", extra=context)

    def _log_outgoing(self, request: Request, response: Response, elapsed: float) -> None:
        status = response.status_code
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        elif request.url.path in QUIET_PATHS:
            level = logging.DEBUG
        else:
            level = logging.INFO

        logger.log(
            level,
            f"{request.method} {request.url.path} -> {status} ({elapsed:.4f}s)",
            extra={"status_code": status, "process_time": elapsed},
        )

        if elapsed > SLOW_REQUEST_SECONDS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {elapsed:.4f}s",
                extra={"slow_request": True, "process_time": elapsed, "threshold": SLOW_REQUEST_SECONDS}
            )
