"""Learning-loop job definitions.

Jobs:
- learning_process_outcome: apply one queued trade outcome (dispatched on submission)
- learning_sweep_outcomes: drain outcomes whose dispatch was lost (every 5 min)
"""

from __future__ import annotations

from conviction.core.config import settings
from conviction.core.logging import get_logger
from conviction.engine.learning import LearningLoop
from conviction.engine.stores import get_learning_store

from .registry import register_job


logger = get_logger("jobs.definitions")


@register_job("learning_process_outcome")
async def process_outcome_job(outcome_id: int) -> str:
    """Apply one outcome to the weight and adaptation stores exactly once."""
    loop = LearningLoop(get_learning_store())
    update = await loop.process_trade_outcome(outcome_id)
    if update is None:
        return f"Outcome {outcome_id} already processed"
    return (
        f"Outcome {outcome_id} ({update.ticker} {update.result.value}) "
        f"nudged {len(update.source_ids)} sources"
    )


@register_job("learning_sweep_outcomes")
async def sweep_outcomes_job() -> str:
    """Process every pending outcome, oldest first."""
    loop = LearningLoop(get_learning_store())
    applied = await loop.process_pending(limit=settings.outcome_sweep_batch_size)
    if applied:
        logger.info(f"Outcome sweep applied {applied} pending outcomes")
    return f"Applied {applied} pending outcomes"
