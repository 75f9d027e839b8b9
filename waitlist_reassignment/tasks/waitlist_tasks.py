"""
Celery tasks for reclaiming expired waitlist offers.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from .celery_app import celery_app, SWEEP_TASK
from ..database import create_database_engine, create_session_factory
from ..services.expiration_service import ExpirationService

logger = logging.getLogger(__name__)


async def run_sweep_once(database_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Run one expiration sweep on a dedicated engine.

    Each Celery run gets a fresh event loop, so the engine is created and
    disposed inside it rather than shared with the API process.
    """
    engine = create_database_engine(database_url)
    session_factory = create_session_factory(engine)

    try:
        async with session_factory() as session:
            result = await ExpirationService(session).run_expiration_sweep()
    finally:
        await engine.dispose()

    return {
        "cleaned_count": result.cleaned_count,
        "reassigned_count": result.reassigned_count,
        "failed_count": result.failed_count,
    }


@celery_app.task(bind=True, name=SWEEP_TASK)
def expire_waitlist_offers_task(self, database_url: Optional[str] = None):
    """
    Periodic task expiring waitlist offers past their reservation window.

    Runs on the beat schedule; each expired offer is rolled back and its
    ticket offered to the next person on the waitlist.
    """
    logger.info("Starting waitlist offer expiration task")

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(run_sweep_once(database_url))
    except Exception as e:
        logger.error(f"Error in waitlist offer expiration task: {e}")
        raise
    finally:
        loop.close()

    logger.info(f"Waitlist offer expiration task finished: {result}")
    return result
