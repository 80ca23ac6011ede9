"""Evaluation endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from conviction.api.dependencies import get_engine
from conviction.engine.orchestrator import ConvictionEngine
from conviction.engine.schemas import EvaluationResult
from conviction.schemas.evaluation import EvaluationRequest


router = APIRouter()


@router.post(
    "/evaluate",
    response_model=EvaluationResult,
    summary="Evaluate a ticker",
    description=(
        "Aggregate the submitted signals into a consensus score, recalibrate it "
        "against learned history and build a sized trade plan."
    ),
)
async def evaluate(
    request: EvaluationRequest,
    engine: ConvictionEngine = Depends(get_engine),
) -> EvaluationResult:
    return await engine.evaluate(
        request.ticker,
        price=request.price,
        snapshot=request.to_snapshot(),
        tier=request.tier,
        sector=request.sector,
        regime=request.regime,
        volatility_profile=request.volatility_profile,
        direction=request.direction,
        base_score=request.base_score,
        as_of=request.as_of,
    )
