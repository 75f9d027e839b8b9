"""API routers, mounted under ``/api/v1``."""

from fastapi import APIRouter

from ..schemas.common import ErrorResponse
from .waitlist import router as waitlist_router
from .tickets import router as tickets_router
from .ticket_types import router as ticket_types_router

# Documented on every route; the bodies come from ErrorHandlerMiddleware
ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (400, 403, 404, 409, 410)
}

api_router = APIRouter(prefix="/api/v1", responses=ERROR_RESPONSES)

for router in (waitlist_router, tickets_router, ticket_types_router):
    api_router.include_router(router)

__all__ = ["api_router"]
