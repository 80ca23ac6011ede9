"""Celery application setup for background jobs."""

from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from conviction.core.config import settings


broker_url = os.getenv("CELERY_BROKER_URL", settings.celery_broker_url)
result_backend = os.getenv("CELERY_RESULT_BACKEND", broker_url)

celery_app = Celery("conviction", broker=broker_url, backend=result_backend)

celery_app.conf.update(
    timezone=settings.scheduler_timezone,
    enable_utc=True,
    broker_connection_retry_on_startup=True,
    worker_prefetch_multiplier=1,
    # An outcome is only acked once its learning transaction committed
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_soft_time_limit=int(os.getenv("CELERY_TASK_SOFT_TIME_LIMIT", "300")),
    task_time_limit=int(os.getenv("CELERY_TASK_TIME_LIMIT", "360")),
    worker_max_tasks_per_child=int(os.getenv("CELERY_MAX_TASKS_PER_CHILD", "1000")),
    task_default_queue="learning",
    task_queues=(Queue("learning", routing_key="learning"),),
    beat_schedule={
        "learning-sweep-outcomes": {
            "task": "learning.sweep_outcomes",
            "schedule": float(settings.outcome_sweep_interval_seconds),
        },
    },
)

# Register tasks
celery_app.autodiscover_tasks(["conviction.jobs"])
