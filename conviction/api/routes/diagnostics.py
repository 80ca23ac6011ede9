"""Read-only views of learned weights and adaptive parameters."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from conviction.api.dependencies import get_store
from conviction.engine.state import LearningStore
from conviction.schemas.diagnostics import AdaptationResponse, EngineWeightResponse


router = APIRouter()


@router.get("/weights", response_model=list[EngineWeightResponse])
async def list_weights(store: LearningStore = Depends(get_store)) -> list[EngineWeightResponse]:
    """Learned per-source weights, sorted by source id."""
    return [
        EngineWeightResponse(
            source_id=w.source_id,
            weight=w.weight,
            wins=w.wins,
            losses=w.losses,
            win_rate=w.win_rate,
            updated_at=w.updated_at,
        )
        for w in await store.list_weights()
    ]


@router.get("/adaptations", response_model=list[AdaptationResponse])
async def list_adaptations(store: LearningStore = Depends(get_store)) -> list[AdaptationResponse]:
    return [
        AdaptationResponse(
            param_key=p.param_key,
            value=p.value,
            description=p.description,
            updated_at=p.updated_at,
        )
        for p in await store.list_adaptations()
    ]
