"""
Confidence recalibration pipeline.

A baseline confidence passes through a fixed, ordered chain of stages.
Each stage returns a bounded multiplier (1.0 when its data is missing)
plus an optional reason and note. The final score is
``round(base * product)`` clamped to [1, 99].

Stage order is part of the contract:

1. agent_reliability     contributing sources' historical win rate
2. sector_bias           sector win-rate skew
3. drawdown_sensitivity  per-tier dampener
4. volatility_shock      volatility regime
5. seasonal              month / earnings season / calendar events
6. drift_correction      predicted vs realized win rate on recent trades
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from conviction.core.logging import get_logger
from conviction.engine.config import DEFAULT_RECALIBRATION_CONFIG, RecalibrationConfig
from conviction.engine.schemas import AppliedFactor, RecalibratedConfidence
from conviction.engine.signals import AuxiliarySignals
from conviction.engine.state import LearningState

logger = get_logger("engine.recalibration")


@dataclass(frozen=True)
class RecalibrationContext:
    """Inputs shared by every stage, all captured from one snapshot."""

    tier: str | None = None
    sector: str | None = None
    source_ids: tuple[str, ...] = ()
    aux: AuxiliarySignals = field(default_factory=AuxiliarySignals)
    state: LearningState = field(default_factory=LearningState)
    as_of: datetime | None = None


@dataclass(frozen=True)
class StageResult:
    multiplier: float = 1.0
    reason: str | None = None
    note: str | None = None


NEUTRAL = StageResult()

Stage = Callable[[RecalibrationContext, RecalibrationConfig], StageResult]


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


# =============================================================================
# Stages
# =============================================================================


def agent_reliability(ctx: RecalibrationContext, config: RecalibrationConfig) -> StageResult:
    rates = []
    for source_id in ctx.source_ids:
        stat = ctx.state.weights.get(source_id)
        if stat is not None and stat.samples >= config.reliability_min_samples:
            rates.append(stat.win_rate)
    if not rates:
        return NEUTRAL

    avg_rate = float(np.mean(rates))
    multiplier = _clamp(
        1 + (avg_rate - 0.5) * config.reliability_gain,
        config.reliability_floor,
        config.reliability_ceiling,
    )
    return StageResult(
        multiplier,
        f"Agent reliability: {avg_rate:.0%} historical win rate across {len(rates)} sources",
    )


def sector_bias(ctx: RecalibrationContext, config: RecalibrationConfig) -> StageResult:
    if not ctx.sector:
        return NEUTRAL
    stat = ctx.state.sector_performance.get(ctx.sector)
    if stat is None or stat.total < config.sector_min_samples:
        return NEUTRAL

    win_rate = stat.win_rate
    multiplier = 1.0
    for threshold, value in (config.sector_strong_edge, config.sector_slight_edge):
        if win_rate > threshold:
            multiplier = value
            break
    else:
        for threshold, value in (config.sector_strong_weakness, config.sector_slight_weakness):
            if win_rate < threshold:
                multiplier = value
                break

    if stat.avg_pnl < 0:
        multiplier = min(multiplier, config.sector_negative_pnl_cap)

    return StageResult(
        multiplier,
        f"Sector bias: {ctx.sector} {win_rate:.0f}% win rate, avg P&L {stat.avg_pnl:+.1f}% "
        f"over {stat.total} trades",
    )


def drawdown_sensitivity(ctx: RecalibrationContext, config: RecalibrationConfig) -> StageResult:
    if not ctx.tier:
        return NEUTRAL
    multiplier = config.tier_drawdown_multipliers.get(ctx.tier, 1.0)
    return StageResult(multiplier, f"Drawdown sensitivity for {ctx.tier} tier")


def volatility_shock(ctx: RecalibrationContext, config: RecalibrationConfig) -> StageResult:
    regime = ctx.aux.volatility_regime
    if regime is None:
        return NEUTRAL
    multiplier = config.volatility_multipliers.get(regime.value, 1.0)
    return StageResult(multiplier, f"Volatility shock: {regime.value} volatility regime")


def seasonal(ctx: RecalibrationContext, config: RecalibrationConfig) -> StageResult:
    note = None
    if ctx.aux.has_calendar_event:
        note = f"{ctx.aux.calendar_event} event window: expect elevated volatility"

    as_of = ctx.as_of
    if as_of is None:
        return StageResult(config.calendar_event_multiplier if note else 1.0, None, note)

    multiplier = config.month_multipliers.get(as_of.month, 1.0)
    parts = []
    if multiplier != 1.0:
        parts.append(f"{as_of:%B} seasonality")
    if as_of.month in config.earnings_season_months:
        multiplier *= config.earnings_season_multiplier
        parts.append("earnings season")
    if note:
        multiplier *= config.calendar_event_multiplier

    reason = f"Seasonal: {', '.join(parts)}" if parts else None
    return StageResult(multiplier, reason, note)


def drift_correction(ctx: RecalibrationContext, config: RecalibrationConfig) -> StageResult:
    samples = ctx.state.calibration_samples
    if len(samples) < config.drift_min_samples:
        return NEUTRAL

    predicted = np.array([confidence for confidence, _ in samples], dtype=float) / 100.0
    realized = np.array([won for _, won in samples], dtype=float)
    mean_predicted = float(predicted.mean())
    realized_rate = float(realized.mean())

    multiplier = _clamp(
        1 + (realized_rate - mean_predicted) * config.drift_gain,
        config.drift_floor,
        config.drift_ceiling,
    )
    direction = "over" if realized_rate < mean_predicted else "under"
    return StageResult(
        multiplier,
        f"Drift correction: {direction}-confident (predicted {mean_predicted:.0%}, "
        f"realized {realized_rate:.0%} over {len(samples)} trades)",
    )


STAGES: tuple[tuple[str, Stage], ...] = (
    ("agent_reliability", agent_reliability),
    ("sector_bias", sector_bias),
    ("drawdown_sensitivity", drawdown_sensitivity),
    ("volatility_shock", volatility_shock),
    ("seasonal", seasonal),
    ("drift_correction", drift_correction),
)


# =============================================================================
# Pipeline
# =============================================================================


def recalibrate(
    base_score: float,
    context: RecalibrationContext | None = None,
    *,
    config: RecalibrationConfig = DEFAULT_RECALIBRATION_CONFIG,
    stages: tuple[tuple[str, Stage], ...] = STAGES,
) -> RecalibratedConfidence:
    """
    Run the baseline confidence through every stage in order.

    Args:
        base_score: Starting confidence (0-100)
        context: Tier, sector, auxiliary signals and learning state
        config: Tuning override
        stages: Stage chain; defaults to the canonical order

    Returns:
        RecalibratedConfidence with an integer score in [1, 99]
    """
    context = context or RecalibrationContext()
    notes: list[str] = []

    if base_score is None or not math.isfinite(base_score):
        logger.warning(f"Invalid base score {base_score!r}; using neutral 50")
        notes.append("Base score unavailable; neutral 50 used")
        base_score = 50.0

    running = float(base_score)
    factors: list[AppliedFactor] = []

    for name, stage in stages:
        result = stage(context, config)
        multiplier = result.multiplier
        if not math.isfinite(multiplier):
            logger.warning(f"Stage {name} produced {multiplier!r}; ignored")
            multiplier = 1.0
        multiplier = _clamp(multiplier, config.stage_floor, config.stage_ceiling)

        running *= multiplier
        if not math.isclose(multiplier, 1.0, abs_tol=1e-9):
            reason = result.reason or name.replace("_", " ").capitalize()
            factors.append(
                AppliedFactor(
                    name=name,
                    multiplier=round(multiplier, 4),
                    reason=f"{reason} (x{multiplier:.2f})",
                )
            )
        if result.note:
            notes.append(result.note)

    score = int(_clamp(round(running), config.min_score, config.max_score))
    return RecalibratedConfidence(
        score=score,
        base_score=float(base_score),
        applied_factors=factors,
        notes=notes,
    )
