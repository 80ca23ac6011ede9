"""
Conviction engine.

Consensus -> confidence recalibration -> trade plan, plus the
outcome-driven learning loop that tunes source weights and risk
parameters for later evaluations.

Usage:
    from conviction.engine.orchestrator import evaluate_snapshot
    from conviction.engine.state import LearningState

    result = evaluate_snapshot(snapshot, LearningState.defaults(), price=182.5, tier="blue_chip")
"""

from conviction.engine.consensus import aggregate_groups, compute_consensus
from conviction.engine.learning import LearningLoop, classify_outcome
from conviction.engine.recalibration import RecalibrationContext, recalibrate
from conviction.engine.schemas import (
    ConfidenceTier,
    ConsensusResult,
    EvaluationResult,
    MacroRegime,
    RecalibratedConfidence,
    Signal,
    SignalGroup,
    SignalSnapshot,
    TradeDirection,
    TradeOutcome,
    TradePlan,
    VolatilityProfile,
    VolatilityRegime,
)
from conviction.engine.trade_plan import construct_plan, no_trade_plan


__all__ = [
    "ConfidenceTier",
    "ConsensusResult",
    "EvaluationResult",
    "LearningLoop",
    "MacroRegime",
    "RecalibratedConfidence",
    "RecalibrationContext",
    "Signal",
    "SignalGroup",
    "SignalSnapshot",
    "TradeDirection",
    "TradeOutcome",
    "TradePlan",
    "VolatilityProfile",
    "VolatilityRegime",
    "aggregate_groups",
    "classify_outcome",
    "compute_consensus",
    "construct_plan",
    "no_trade_plan",
    "recalibrate",
]
