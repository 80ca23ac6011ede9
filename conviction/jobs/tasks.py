"""Celery tasks for the learning loop."""

from __future__ import annotations

import asyncio
from typing import Any

import conviction.jobs.definitions  # noqa: F401 - register jobs
from conviction.celery_app import celery_app
from conviction.core.exceptions import PersistenceUnavailableError
from conviction.core.logging import get_logger
from conviction.jobs.executor import execute_job


logger = get_logger("jobs.celery_tasks")

# Per-worker event loop for Celery prefork pool
_worker_loop: asyncio.AbstractEventLoop | None = None


def _get_worker_loop() -> asyncio.AbstractEventLoop:
    """Get or create a persistent event loop for the worker process."""
    global _worker_loop
    if _worker_loop is None or _worker_loop.is_closed():
        _worker_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_worker_loop)
    return _worker_loop


def _run_async(coro: Any) -> Any:
    """Run async coroutine in the worker's event loop.

    A persistent loop keeps the pooled asyncpg connections usable across tasks.
    """
    loop = _get_worker_loop()
    return loop.run_until_complete(coro)


@celery_app.task(
    name="learning.process_outcome",
    autoretry_for=(PersistenceUnavailableError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    max_retries=None,
)
def process_outcome_task(outcome_id: int) -> str:
    """Apply one outcome; store outages re-queue the task instead of dropping it."""
    return _run_async(execute_job("learning_process_outcome", outcome_id))


@celery_app.task(name="learning.sweep_outcomes")
def sweep_outcomes_task() -> str:
    return _run_async(execute_job("learning_sweep_outcomes"))
