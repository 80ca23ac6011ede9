"""Celery job dispatch utilities."""

from __future__ import annotations

from conviction.celery_app import celery_app
from conviction.core.logging import get_logger


logger = get_logger("jobs.dispatch")


def enqueue_outcome(outcome_id: int) -> str | None:
    """Queue learning for a stored outcome.

    Returns the task id, or None when the broker is unreachable. The outcome
    is already durable, so the periodic sweep picks it up later.
    """
    try:
        result = celery_app.send_task("learning.process_outcome", args=[outcome_id])
    except Exception as e:
        logger.warning(f"Could not dispatch outcome {outcome_id}, sweep will retry: {e}")
        return None
    return result.id

