"""
Conviction engine orchestrator.

Main entry point for evaluating a ticker:
snapshot -> consensus -> recalibration -> trade plan.

The snapshot and the learning state are each read once at the start of a
decision; the numeric pipeline after that is pure and deterministic.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime

from conviction.core.config import settings
from conviction.core.logging import get_logger, request_id_var
from conviction.engine.config import (
    DEFAULT_CONSENSUS_CONFIG,
    DEFAULT_PLAN_CONFIG,
    DEFAULT_RECALIBRATION_CONFIG,
    ConsensusConfig,
    PlanConfig,
    RecalibrationConfig,
)
from conviction.engine.consensus import consensus_from_snapshot
from conviction.engine.recalibration import RecalibrationContext, recalibrate
from conviction.engine.schemas import (
    EvaluationResult,
    MacroRegime,
    SignalGroup,
    SignalSnapshot,
    TradeDirection,
    VolatilityProfile,
    VolatilityRegime,
)
from conviction.engine.signals import AuxiliarySignals, SignalProvider, collect_signals
from conviction.engine.state import LearningState, StateProvider
from conviction.engine.stores import get_state_provider
from conviction.engine.trade_plan import construct_plan

logger = get_logger("engine.orchestrator")


def infer_volatility_profile(aux: AuxiliarySignals) -> VolatilityProfile:
    """Fallback profile when the caller does not supply one."""
    if aux.volatility_regime in (VolatilityRegime.HIGH, VolatilityRegime.EXTREME):
        return VolatilityProfile.HIGH
    if aux.volatility_regime == VolatilityRegime.LOW:
        return VolatilityProfile.LOW
    return VolatilityProfile.MEDIUM


def _evaluation_id(snapshot: SignalSnapshot, params: dict) -> str:
    payload = snapshot.model_dump_json() + json.dumps(params, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


def evaluate_snapshot(
    snapshot: SignalSnapshot,
    state: LearningState,
    *,
    price: float,
    tier: str | None = None,
    sector: str | None = None,
    regime: MacroRegime | str | None = None,
    volatility_profile: VolatilityProfile | str | None = None,
    direction: TradeDirection = TradeDirection.LONG,
    base_score: float | None = None,
    as_of: datetime | None = None,
    source_groups: dict[str, SignalGroup] | None = None,
    consensus_config: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
    recalibration_config: RecalibrationConfig = DEFAULT_RECALIBRATION_CONFIG,
    plan_config: PlanConfig = DEFAULT_PLAN_CONFIG,
) -> EvaluationResult:
    """
    Run the full decision pipeline on one snapshot.

    Args:
        snapshot: Every signal for this decision
        state: Learned weights and parameters (read once, never mutated)
        price: Current price for the plan
        tier: Asset tier
        sector: Sector name
        regime: Macro regime for consensus weighting
        volatility_profile: Sizing bucket; inferred from the volatility regime if omitted
        direction: LONG or SHORT
        base_score: Upstream confidence to recalibrate; the consensus score when omitted
        as_of: Date for seasonal effects; the snapshot time when omitted

    Returns:
        EvaluationResult; identical inputs give identical output
    """
    aux = AuxiliarySignals.from_snapshot(snapshot)
    as_of = as_of or snapshot.taken_at

    consensus = consensus_from_snapshot(
        snapshot,
        regime,
        tier,
        sector,
        weights=state.weight_values(),
        source_groups=source_groups,
        volatility_proxy=aux.volatility_index,
        config=consensus_config,
    )

    context = RecalibrationContext(
        tier=tier,
        sector=sector,
        source_ids=tuple(snapshot.source_ids),
        aux=aux,
        state=state,
        as_of=as_of,
    )
    confidence = recalibrate(
        consensus.final_score if base_score is None else base_score,
        context,
        config=recalibration_config,
    )

    plan = construct_plan(
        snapshot.ticker,
        price,
        confidence,
        volatility_profile or infer_volatility_profile(aux),
        tier,
        sector,
        aux,
        state=state,
        regime=consensus.regime,
        direction=direction,
        config=plan_config,
    )

    evaluation_id = _evaluation_id(
        snapshot,
        {
            "price": price,
            "tier": tier,
            "sector": sector,
            "regime": str(regime),
            "profile": str(volatility_profile),
            "direction": direction.value,
            "base_score": base_score,
            "as_of": as_of,
        },
    )

    return EvaluationResult(
        evaluation_id=evaluation_id,
        ticker=snapshot.ticker,
        as_of=as_of,
        consensus=consensus,
        confidence=confidence,
        plan=plan,
        signal_sources=snapshot.source_ids,
        state_is_fallback=state.is_fallback,
    )


class ConvictionEngine:
    """
    Evaluates tickers against live providers and the cached learning state.

    Features:
    - Concurrent, individually time-bounded signal collection
    - One learning-state read per decision (fallback state on store failure)
    - Pure pipeline after the snapshot is taken
    """

    def __init__(
        self,
        state_provider: StateProvider | None = None,
        providers: list[SignalProvider] | None = None,
        signal_timeout: float | None = None,
        source_groups: dict[str, SignalGroup] | None = None,
    ):
        self.state_provider = state_provider or get_state_provider()
        self.providers = providers or []
        self.signal_timeout = (
            settings.signal_provider_timeout if signal_timeout is None else signal_timeout
        )
        self.source_groups = source_groups

    async def evaluate(
        self,
        ticker: str,
        *,
        price: float,
        snapshot: SignalSnapshot | None = None,
        providers: list[SignalProvider] | None = None,
        **options,
    ) -> EvaluationResult:
        """Collect (or take) a snapshot, read state once, and run the pipeline."""
        if snapshot is None:
            snapshot = await collect_signals(
                ticker, providers if providers is not None else self.providers, self.signal_timeout
            )
        state = await self.state_provider.get_state()
        if state.is_fallback:
            logger.warning(f"Evaluating {snapshot.ticker} with fallback learning state")

        result = evaluate_snapshot(
            snapshot,
            state,
            price=price,
            source_groups=self.source_groups,
            **options,
        )

        token = None
        if request_id_var.get() is None:
            token = request_id_var.set(result.evaluation_id)
        try:
            logger.info(
                f"Evaluated {result.ticker}: consensus {result.consensus.final_score} "
                f"({result.consensus.confidence_tier.value}), confidence {result.confidence.score}, "
                f"{result.plan.direction.value} {result.plan.allocation_percent}%",
                extra={"evaluation_id": result.evaluation_id, "signals": len(result.signal_sources)},
            )
        finally:
            if token is not None:
                request_id_var.reset(token)
        return result

