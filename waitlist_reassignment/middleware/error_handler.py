"""
Turns exceptions escaping the routers into JSON error responses.

Response body::

    {"error": {"error_code": ..., "message": ..., ...}, "error_id": ..., "timestamp": ...}

Service exceptions bring their own status code. Database failures are
translated: constraint violations become 409, lost connections 503.
Anything else is a 500 whose details are only shown in debug mode.
"""

import logging
import traceback
from datetime import datetime, timezone
from uuid import uuid4

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as SQLTimeoutError
from pydantic import ValidationError as PydanticValidationError

from ..utils.exceptions import (
    WaitlistReassignmentError,
    ValidationError,
    ConcurrencyError,
    DatabaseUnavailableError,
)

logger = logging.getLogger(__name__)


def _constraint_error(exc: IntegrityError) -> ValidationError:
    text = str(getattr(exc, "orig", exc)).lower()
    if "unique" in text:
        return ValidationError("A record with this information already exists", details={"constraint_type": "unique"})
    if "foreign key" in text:
        return ValidationError("Referenced resource does not exist", details={"constraint_type": "foreign_key"})
    return ValidationError("Data integrity constraint violation", details={"constraint_type": "unknown"})


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch-all producing the service's error envelope."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid4())
            self._log(request, exc, error_id)
            return self._render(exc, error_id)

    def _render(self, exc: Exception, error_id: str) -> JSONResponse:
        if isinstance(exc, WaitlistReassignmentError):
            return self._respond(exc.status_code, exc, error_id)

        if isinstance(exc, PydanticValidationError):
            field_errors = {}
            for error in exc.errors():
                field_errors.setdefault(".".join(str(loc) for loc in error["loc"]), []).append(error["msg"])
            return self._respond(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                ValidationError("Request validation failed", field_errors=field_errors),
                error_id
            )

        if isinstance(exc, IntegrityError):
            return self._respond(status.HTTP_409_CONFLICT, _constraint_error(exc), error_id)

        if isinstance(exc, (OperationalError, SQLTimeoutError)):
            error = DatabaseUnavailableError(details={"error_type": type(exc).__name__})
            return self._respond(error.status_code, error, error_id)

        error = WaitlistReassignmentError(
            "An unexpected error occurred",
            details={"error_type": type(exc).__name__} if self.debug else None
        )
        response = self._respond(status.HTTP_500_INTERNAL_SERVER_ERROR, error, error_id)
        if self.debug:
            content = self._body(error, error_id)
            content["debug"] = {"exception": str(exc), "traceback": traceback.format_exc()}
            response = JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)
        return response

    def _respond(self, status_code: int, error: WaitlistReassignmentError, error_id: str) -> JSONResponse:
        headers = {"Retry-After": str(error.retry_after)} if error.retry_after else None
        return JSONResponse(status_code=status_code, content=self._body(error, error_id), headers=headers)

    def _body(self, error: WaitlistReassignmentError, error_id: str) -> dict:
        return {
            "error": error.to_dict(),
            "error_id": error_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def _log(self, request: Request, exc: Exception, error_id: str) -> None:
        context = {
            "error_id": error_id,
            "method": request.method,
            "path": request.url.path,
        }

        if not isinstance(exc, WaitlistReassignmentError):
            logger.error(
                f"Unexpected error [{error_id}]: {exc}",
                extra={**context, "error_type": type(exc).__name__},
                exc_info=True
            )
            return

        context.update(error_code=exc.error_code.value, details=exc.details)
        # 4xx are the caller's problem; contention and outages are ours
        if exc.status_code >= 500 or isinstance(exc, ConcurrencyError):
            logger.error(f"Request failed [{error_id}]: {exc.message}", extra=context)
        else:
            logger.warning(f"Request rejected [{error_id}]: {exc.message}", extra=context)
