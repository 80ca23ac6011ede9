"""Read-only diagnostic schemas for learned weights and parameters."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class EngineWeightResponse(BaseModel):
    source_id: str
    weight: float = Field(..., ge=0.1, le=2.0)
    wins: int
    losses: int
    win_rate: float | None = Field(None, description="Fraction of wins, null without history")
    updated_at: datetime | None = None


class AdaptationResponse(BaseModel):
    param_key: str
    value: float
    description: str | None = None
    updated_at: datetime | None = None
