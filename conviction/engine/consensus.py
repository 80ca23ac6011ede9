"""
Consensus engine.

Blends per-group signal values into one 0-100 score using a
regime-dependent weight vector. Missing or malformed inputs degrade to the
neutral value; the computation never raises on bad data.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from conviction.core.logging import get_logger
from conviction.engine.config import DEFAULT_CONSENSUS_CONFIG, ConsensusConfig
from conviction.engine.schemas import (
    ConfidenceTier,
    ConsensusResult,
    MacroRegime,
    Signal,
    SignalGroup,
    SignalSnapshot,
)
from conviction.engine.signals import resolve_group

logger = get_logger("engine.consensus")


def resolve_regime(regime: MacroRegime | str | None) -> MacroRegime | None:
    """Parse a regime name; None when it is not one of the supported regimes."""
    if isinstance(regime, MacroRegime):
        return regime
    if not regime:
        return None
    try:
        return MacroRegime(str(regime).upper().strip().replace("-", "_"))
    except ValueError:
        return None


def normalize_value(value: Any, config: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG) -> float:
    """Map a raw signal value onto [0, 100].

    Numbers are clamped, known labels are looked up, anything else is neutral.
    """
    if isinstance(value, Signal):
        value = value.value
    if isinstance(value, bool) or value is None:
        return config.neutral_value
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return config.neutral_value
        return min(100.0, max(0.0, float(value)))
    if isinstance(value, str):
        key = value.strip().upper().replace(" ", "_").replace("-", "_")
        return float(config.classification_scores.get(key, config.neutral_value))
    return config.neutral_value


def confidence_tier(score: float, config: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG) -> ConfidenceTier:
    if score >= config.high_tier_min:
        return ConfidenceTier.HIGH
    if score >= config.medium_tier_min:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def aggregate_groups(
    signals: Iterable[Signal],
    weights: Mapping[str, float] | None = None,
    source_groups: dict[str, SignalGroup] | None = None,
    config: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
) -> dict[SignalGroup, float]:
    """
    Collapse individual signals into one value per consensus group.

    Sources in the same group are averaged, weighted by their learned
    engine weight (1.0 for sources without history). Signals that map to
    no group are auxiliary and ignored here.
    """
    totals: dict[SignalGroup, float] = {}
    weight_sums: dict[SignalGroup, float] = {}
    weights = weights or {}

    for signal in signals:
        group = resolve_group(signal, source_groups)
        if group is None:
            continue
        weight = weights.get(signal.source_id, 1.0)
        if not weight > 0:
            continue
        value = normalize_value(signal.value, config)
        totals[group] = totals.get(group, 0.0) + value * weight
        weight_sums[group] = weight_sums.get(group, 0.0) + weight

    return {group: totals[group] / weight_sums[group] for group in totals}


def compute_consensus(
    ticker: str,
    group_values: Mapping[SignalGroup | str, Any],
    regime: MacroRegime | str | None,
    tier: str | None = None,
    sector: str | None = None,
    *,
    volatility_proxy: float | None = None,
    config: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
) -> ConsensusResult:
    """
    Blend group values into a consensus score.

    Args:
        ticker: Symbol under evaluation
        group_values: Group -> value (0-100 number or label). Missing groups are neutral.
        regime: Macro regime; unsupported values fall back to RISK_ON
        tier: Asset tier (recorded in details)
        sector: Sector name, used for the regime alignment bonus
        volatility_proxy: VIX-like stress reading; above the threshold a flat penalty applies
        config: Tuning override

    Returns:
        ConsensusResult with final_score clamped to [0, 100]
    """
    ticker = (ticker or "").upper().strip()
    details: list[str] = []

    resolved = resolve_regime(regime)
    if resolved is None:
        if regime:
            logger.warning(f"Unsupported regime {regime!r} for {ticker}, using {config.default_regime}")
            details.append(f"Unsupported regime {regime}; defaulted to {config.default_regime}")
        resolved = MacroRegime(config.default_regime)

    values: dict[SignalGroup, Any] = {}
    for key, value in (group_values or {}).items():
        try:
            group = key if isinstance(key, SignalGroup) else SignalGroup(str(key).lower())
        except ValueError:
            logger.debug(f"Ignoring unknown consensus group {key!r}")
            continue
        values[group] = value

    if not values:
        logger.warning(f"No consensus inputs for {ticker}; returning neutral result")
        return ConsensusResult(
            ticker=ticker,
            final_score=int(config.neutral_value),
            breakdown={},
            regime=resolved,
            regime_adjustment=0.0,
            confidence_tier=ConfidenceTier.LOW,
            details=details + ["No signals available"],
            signal_count=0,
        )

    normalized: dict[SignalGroup, float] = {}
    for group in SignalGroup:
        if group in values:
            normalized[group] = normalize_value(values[group], config)
        else:
            normalized[group] = config.neutral_value
            details.append(f"{group.value} signal missing; neutral {config.neutral_value:g} used")

    if sector:
        aligned = (resolved == MacroRegime.RISK_ON and sector in config.growth_sectors) or (
            resolved == MacroRegime.RISK_OFF and sector in config.defensive_sectors
        )
        if aligned:
            normalized[SignalGroup.MACRO] = min(
                100.0, normalized[SignalGroup.MACRO] + config.alignment_bonus
            )
            details.append(f"Sector {sector} aligned with {resolved.value} (+{config.alignment_bonus:g} macro)")

    regime_weights = config.regime_weights[resolved.value]
    raw_score = sum(normalized[group] * regime_weights[group.value] for group in SignalGroup)

    regime_adjustment = 0.0
    if (
        volatility_proxy is not None
        and math.isfinite(volatility_proxy)
        and volatility_proxy > config.stress_threshold
    ):
        regime_adjustment = -config.stress_penalty
        details.append(
            f"Stress override: volatility {volatility_proxy:.1f} > {config.stress_threshold:g} "
            f"(-{config.stress_penalty:g})"
        )

    final_score = int(min(100, max(0, round(raw_score + regime_adjustment))))
    if tier:
        details.append(f"Tier {tier}")

    return ConsensusResult(
        ticker=ticker,
        final_score=final_score,
        breakdown={group.value: round(normalized[group], 2) for group in SignalGroup},
        regime=resolved,
        regime_adjustment=regime_adjustment,
        confidence_tier=confidence_tier(final_score, config),
        details=details,
        signal_count=len(values),
    )


def consensus_from_snapshot(
    snapshot: SignalSnapshot,
    regime: MacroRegime | str | None,
    tier: str | None = None,
    sector: str | None = None,
    *,
    weights: Mapping[str, float] | None = None,
    source_groups: dict[str, SignalGroup] | None = None,
    volatility_proxy: float | None = None,
    config: ConsensusConfig = DEFAULT_CONSENSUS_CONFIG,
) -> ConsensusResult:
    """Aggregate a snapshot by group and run ``compute_consensus`` on it."""
    group_values = aggregate_groups(
        (snapshot.signals[source_id] for source_id in snapshot.source_ids),
        weights=weights,
        source_groups=source_groups,
        config=config,
    )
    return compute_consensus(
        snapshot.ticker,
        group_values,
        regime,
        tier,
        sector,
        volatility_proxy=volatility_proxy,
        config=config,
    )
