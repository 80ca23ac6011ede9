"""Trade outcome submission."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from conviction.api.dependencies import get_store
from conviction.core.logging import get_logger
from conviction.engine.learning import LearningLoop
from conviction.engine.schemas import TradeOutcome
from conviction.engine.state import LearningStore
from conviction.jobs.dispatch import enqueue_outcome
from conviction.schemas.outcomes import OutcomeAccepted


router = APIRouter()

logger = get_logger("api.outcomes")


@router.post(
    "/outcomes",
    response_model=OutcomeAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Report a closed trade",
    description=(
        "Store the outcome durably and queue it for learning. Weights and "
        "stop-loss padding change asynchronously; resubmitting the same "
        "outcome_key is a no-op."
    ),
)
async def submit_outcome(
    outcome: TradeOutcome,
    store: LearningStore = Depends(get_store),
) -> OutcomeAccepted:
    outcome_id, created = await LearningLoop(store).submit_outcome(outcome)

    task_id = None
    if created:
        task_id = enqueue_outcome(outcome_id)

    return OutcomeAccepted(
        outcome_id=outcome_id,
        outcome_key=outcome.outcome_key,
        duplicate=not created,
        task_id=task_id,
    )
