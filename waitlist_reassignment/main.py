"""ASGI application: routers, middleware stack and process lifecycle."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from waitlist_reassignment.config import settings
from waitlist_reassignment.api import api_router
from waitlist_reassignment.database import init_database, close_database
from waitlist_reassignment.middleware import ErrorHandlerMiddleware, LoggingMiddleware
from waitlist_reassignment.schemas.common import HealthStatus
from waitlist_reassignment.tasks.sweep_worker import ExpirationSweepWorker
from waitlist_reassignment.utils.logging_config import setup_logging

production = settings.environment == "production"
setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file="logs/waitlist.log" if production else None,
    enable_json_logging=settings.enable_json_logging or production
)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

DESCRIPTION = """
Hands returned and refunded tickets of sold-out events to the next person on
the event's waitlist.

* **Waitlist**: join, leave and check your position in an event's queue
* **Offers**: a freed ticket is reserved for the front of the queue for 30 minutes
* **Accept / decline**: accepting completes the transfer and refunds the previous
  holder minus a 2% platform fee; declining passes the ticket on
* **Refunds**: owners return tickets of sold-out events, organizers refund at any time

Authenticate with `Authorization: Bearer <token>` as issued by the identity service.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_database()

    sweeper = None
    if settings.enable_inprocess_sweeper:
        sweeper = ExpirationSweepWorker(interval_seconds=settings.waitlist_sweep_interval_seconds)
        sweeper.start()
    logger.info(f"Waitlist reassignment {VERSION} started ({settings.environment})")

    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        await close_database()
        logger.info("Waitlist reassignment stopped")


def install_middleware(app: FastAPI) -> None:
    """Add middleware innermost first: errors, then request logging, then CORS."""
    app.add_middleware(ErrorHandlerMiddleware, debug=settings.debug)
    app.add_middleware(
        LoggingMiddleware,
        log_requests=settings.enable_request_logging,
        log_responses=settings.enable_request_logging
    )

    # Browsers reject credentials with a wildcard origin
    wildcard = settings.debug
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if wildcard else settings.cors_origins,
        allow_credentials=False if wildcard else settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        expose_headers=settings.cors_expose_headers
    )


app = FastAPI(
    title="Waitlist Reassignment API",
    description=DESCRIPTION,
    version=VERSION,
    openapi_tags=[
        {"name": "waitlist", "description": "Waitlist queues and offer responses"},
        {"name": "tickets", "description": "Ticket returns and organizer refunds"},
        {"name": "ticket-types", "description": "Sold-count audit and repair"},
        {"name": "health", "description": "Liveness"},
    ],
    lifespan=lifespan,
)
install_middleware(app)
app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    return {"message": "Waitlist Reassignment API", "version": VERSION, "docs_url": "/docs"}


@app.get("/health", response_model=HealthStatus, tags=["health"])
async def health_check():
    return HealthStatus(
        status="healthy",
        service="waitlist-reassignment",
        version=VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
