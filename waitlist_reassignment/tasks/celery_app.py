"""
Celery app running the periodic offer expiration sweep.

Start a worker and a beat process (see ``scripts.py worker`` / ``beat``); beat
enqueues ``expire_waitlist_offers_task`` every
``waitlist_sweep_interval_seconds``.
"""

from celery import Celery
from ..config import get_settings

settings = get_settings()

SWEEP_TASK = "expire_waitlist_offers_task"

celery_app = Celery(
    "waitlist_reassignment",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["waitlist_reassignment.tasks.waitlist_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A sweep is bounded by waitlist_sweep_batch_size; anything near these limits is stuck
    task_soft_time_limit=2 * 60,
    task_time_limit=3 * 60,
    # Overlapping sweeps are safe but pointless
    worker_prefetch_multiplier=1,
    result_expires=60 * 60,
    beat_schedule={
        "expire-waitlist-offers": {
            "task": SWEEP_TASK,
            "schedule": float(settings.waitlist_sweep_interval_seconds),
            # A sweep that waited longer than one interval is superseded by the next
            "options": {"expires": float(settings.waitlist_sweep_interval_seconds)},
        },
    },
)
