"""Outcome submission schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class OutcomeAccepted(BaseModel):
    """Acknowledgement for a queued outcome (learning happens asynchronously)."""

    outcome_id: int
    outcome_key: str
    duplicate: bool = Field(False, description="True when this key was already submitted")
    task_id: str | None = Field(None, description="Celery task id, if dispatch succeeded")
