"""
Trade plan constructor.

Turns a calibrated confidence into entry, stop, targets and position size:

- Size: fractional Kelly anchored at ``conviction_threshold``, scaled by
  tier and volatility profile, capped at min(tier cap, max_allocation_cap)
- Stop: ATR-based (or a per-tier percentage) times gamma, tier, volatility
  regime and ``stop_loss_padding`` modifiers, plus a trap-zone buffer
- Targets: 1R/2R/3R times the tier ladder and reward modifiers

Degenerate input produces a FLAT zero-allocation plan, never an exception.
"""

from __future__ import annotations

import math

from conviction.core.logging import get_logger
from conviction.engine.config import DEFAULT_PLAN_CONFIG, PlanConfig
from conviction.engine.schemas import (
    MacroRegime,
    RecalibratedConfidence,
    TradeDirection,
    TradePlan,
    VolatilityProfile,
    VolatilityRegime,
)
from conviction.engine.signals import AuxiliarySignals
from conviction.engine.state import LearningState

logger = get_logger("engine.trade_plan")


def _clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def price_decimals(price: float) -> int:
    """Cheaper instruments keep more precision (about four significant digits)."""
    return max(2, 3 - math.floor(math.log10(price)))


def _resolve_profile(profile: VolatilityProfile | str | None) -> VolatilityProfile:
    if isinstance(profile, VolatilityProfile):
        return profile
    if profile:
        for candidate in VolatilityProfile:
            if candidate.value.lower() == str(profile).strip().lower():
                return candidate
    return VolatilityProfile.MEDIUM


def no_trade_plan(ticker: str, reason: str, max_allocation: float = 0.0) -> TradePlan:
    """Canonical FLAT plan with zero allocation."""
    return TradePlan(
        ticker=(ticker or "").upper().strip(),
        direction=TradeDirection.FLAT,
        entry_primary=0.0,
        entry_secondary=0.0,
        stop_loss=0.0,
        soft_stop=0.0,
        take_profit_1=0.0,
        take_profit_2=0.0,
        take_profit_3=0.0,
        allocation_percent=0.0,
        max_allocation=max(0.0, max_allocation),
        risk_reward_ratio=0.0,
        stop_distance_pct=0.0,
        time_horizon="",
        alerts=[],
        rationale=f"No trade: {reason}",
    )


# =============================================================================
# Sizing
# =============================================================================


def kelly_allocation(
    confidence: float,
    tier: str | None,
    profile: VolatilityProfile,
    conviction_threshold: float,
    config: PlanConfig = DEFAULT_PLAN_CONFIG,
) -> float:
    """Fractional Kelly allocation in percent, before modifiers and caps."""
    win_prob = config.win_prob_base + (
        (confidence - conviction_threshold) / config.confidence_span
    ) * config.win_prob_slope
    win_prob = _clamp(win_prob, 0.01, 0.99)

    risk_reward = config.tier_risk_reward.get(tier or "", config.default_risk_reward)
    kelly = win_prob - (1 - win_prob) / risk_reward
    if kelly <= 0:
        return 0.0

    scalar, _ = config.tier_sizing.get(tier or "", config.default_sizing)
    return kelly * scalar * 100 * config.volatility_size_scalars.get(profile.value, 1.0)


def allocation_cap(tier: str | None, max_allocation_cap: float, config: PlanConfig = DEFAULT_PLAN_CONFIG) -> float:
    _, tier_cap = config.tier_sizing.get(tier or "", config.default_sizing)
    return max(0.0, min(tier_cap, max_allocation_cap))


def size_modifiers(
    aux: AuxiliarySignals,
    regime: MacroRegime | None,
    config: PlanConfig = DEFAULT_PLAN_CONFIG,
) -> list[tuple[float, str]]:
    """(multiplier, alert) pairs applied on top of the Kelly allocation."""
    modifiers = []
    if aux.insider_intent in config.insider_boost_labels:
        modifiers.append((config.insider_boost, f"Insider intent {aux.insider_intent}: size boosted"))
    if regime == MacroRegime.RISK_OFF:
        modifiers.append((config.risk_off_size, "Risk-off macro regime: size halved"))
    if aux.volatility_regime == VolatilityRegime.EXTREME:
        modifiers.append((config.extreme_volatility_size, "Extreme volatility: size halved"))
    if aux.is_trap_zone(config.trap_threshold):
        modifiers.append((config.trap_size, "Reversal trap zone: size reduced"))
    if aux.has_calendar_event:
        modifiers.append((config.calendar_event_size, f"{aux.calendar_event} event: size reduced"))
    return modifiers


# =============================================================================
# Stops and targets
# =============================================================================


def stop_distance(
    tier: str | None,
    profile: VolatilityProfile,
    aux: AuxiliarySignals,
    stop_loss_padding: float,
    config: PlanConfig = DEFAULT_PLAN_CONFIG,
) -> tuple[float, str]:
    """Stop distance as a fraction of entry, with a description of its source."""
    if aux.atr_pct is not None and aux.atr_pct > 0:
        base = aux.atr_pct / 100 * config.atr_stop_multiple
        source = f"{config.atr_stop_multiple:g}x ATR"
    else:
        base = config.tier_stop_pct.get(tier or "", config.default_stop_pct)
        base *= config.profile_stop_scalars.get(profile.value, 1.0)
        source = f"{tier or 'default'} tier {profile.value.lower()} volatility"

    distance = base
    distance *= config.gamma_stop_modifiers.get(aux.gamma_regime or "", 1.0)
    distance *= config.tier_stop_modifiers.get(tier or "", 1.0)
    if aux.volatility_regime is not None:
        distance *= config.volatility_stop_modifiers.get(aux.volatility_regime.value, 1.0)
    distance *= stop_loss_padding

    if aux.is_trap_zone(config.trap_threshold):
        buffer_pct = aux.trap_buffer_pct
        if buffer_pct is None or not math.isfinite(buffer_pct) or buffer_pct < 0:
            buffer_pct = config.trap_default_buffer_pct
        distance += buffer_pct / 100
        source += f" + {buffer_pct:g}% trap buffer"

    return _clamp(distance, config.min_stop_pct, config.max_stop_pct), source


def reward_multiplier(
    tier: str | None,
    aux: AuxiliarySignals,
    regime: MacroRegime | None,
    config: PlanConfig = DEFAULT_PLAN_CONFIG,
) -> float:
    multiplier = config.tier_ladder_multipliers.get(tier or "", 1.0)
    if aux.narrative_pressure is not None and aux.narrative_pressure > config.narrative_reward_threshold:
        multiplier *= config.narrative_reward
    if regime == MacroRegime.RISK_OFF:
        multiplier *= config.risk_off_reward
    return multiplier


def time_horizon(tier: str | None, aux: AuxiliarySignals) -> str:
    if tier == "blue_chip":
        return "3-12 Months"
    if aux.catalyst and aux.catalyst != "NONE":
        return "Event Driven (Days)"
    return "1-4 Weeks"


def _ordered(levels: list[float], direction: TradeDirection) -> bool:
    """stop < soft_stop < entry < tp1 < tp2 < tp3 (mirrored for shorts)."""
    if direction == TradeDirection.SHORT:
        levels = [-level for level in levels]
    return all(a < b for a, b in zip(levels, levels[1:]))


# =============================================================================
# Plan
# =============================================================================


def construct_plan(
    ticker: str,
    price: float,
    confidence: RecalibratedConfidence | float,
    volatility_profile: VolatilityProfile | str | None,
    tier: str | None,
    sector: str | None = None,
    aux: AuxiliarySignals | None = None,
    *,
    state: LearningState | None = None,
    regime: MacroRegime | None = None,
    direction: TradeDirection = TradeDirection.LONG,
    config: PlanConfig = DEFAULT_PLAN_CONFIG,
) -> TradePlan:
    """
    Build a trade plan from a calibrated confidence.

    Args:
        ticker: Symbol
        price: Current price
        confidence: RecalibratedConfidence (its reasons feed the rationale) or a bare score
        volatility_profile: High / Medium / Low (Medium when unknown)
        tier: Asset tier (blue_chip, explosive_growth, sector_play, insider_play, crypto_alpha)
        sector: Sector name (rationale only)
        aux: Auxiliary signals from the same snapshot as the confidence
        state: Learning state supplying padding, threshold and allocation cap
        regime: Macro regime from the consensus
        direction: LONG or SHORT; FLAT yields a no-trade plan

    Returns:
        TradePlan; FLAT with zero allocation on degenerate input
    """
    aux = aux or AuxiliarySignals()
    state = state or LearningState.defaults()
    ticker = (ticker or "").upper().strip()
    max_allocation = allocation_cap(tier, state.max_allocation_cap, config)

    if isinstance(confidence, RecalibratedConfidence):
        score = float(confidence.score)
        reasons = confidence.reasons
        notes = confidence.notes
    else:
        score = float(confidence) if confidence is not None else 0.0
        reasons, notes = [], []

    if price is None or not math.isfinite(price) or price <= 0:
        logger.info(f"No trade for {ticker}: invalid price {price!r}")
        return no_trade_plan(ticker, f"invalid price {price!r}", max_allocation)
    if not math.isfinite(score) or score <= 0:
        logger.info(f"No trade for {ticker}: zero confidence")
        return no_trade_plan(ticker, "no confidence", max_allocation)
    if direction == TradeDirection.FLAT:
        return no_trade_plan(ticker, "flat direction requested", max_allocation)

    profile = _resolve_profile(volatility_profile)
    sign = 1 if direction == TradeDirection.LONG else -1
    alerts: list[str] = []

    # --- Size ---
    allocation = kelly_allocation(score, tier, profile, state.conviction_threshold, config)
    if allocation == 0:
        alerts.append(f"No Kelly edge at confidence {score:.0f}: zero allocation")
    for multiplier, alert in size_modifiers(aux, regime, config):
        allocation *= multiplier
        alerts.append(alert)
    # Floor to cents so rounding can never exceed the cap
    allocation = math.floor(min(allocation, max_allocation) * 100) / 100

    # --- Entries ---
    trap = aux.is_trap_zone(config.trap_threshold)
    if trap:
        entry = price * (1 - sign * config.trap_entry_offset)
        secondary = price * (1 - sign * config.trap_secondary_offset)
    else:
        favourable_flow = "ACCUMULATION" if sign > 0 else "DISTRIBUTION"
        offset = (
            config.accumulation_secondary_offset
            if aux.liquidity_bias == favourable_flow
            else config.default_secondary_offset
        )
        entry = price
        secondary = price * (1 - sign * offset)

    # --- Stop ---
    distance, stop_source = stop_distance(tier, profile, aux, state.stop_loss_padding, config)
    risk = entry * distance
    stop = entry - sign * risk
    soft_stop = entry - sign * risk * config.soft_stop_fraction
    midpoint = (entry + stop) / 2
    secondary = max(secondary, midpoint) if sign > 0 else min(secondary, midpoint)

    # --- Targets ---
    reward = reward_multiplier(tier, aux, regime, config)
    if sign < 0:
        # Short targets must stay above zero
        reward = min(reward, 0.99 / (config.target_multiples[-1] * distance))
    targets = [entry + sign * risk * multiple * reward for multiple in config.target_multiples]
    risk_reward = (targets[0] - entry) / (entry - stop)

    raw = [stop, soft_stop, entry, *targets]
    decimals = price_decimals(price)
    rounded = [round(level, decimals) for level in raw]
    keep_rounded = all(level > 0 for level in rounded) and _ordered(rounded, direction)
    levels = rounded if keep_rounded else raw
    stop, soft_stop, entry, tp1, tp2, tp3 = levels
    secondary = round(secondary, decimals)

    # --- Flags ---
    if aux.gamma_regime == "AMPLIFIED":
        alerts.append("Gamma squeeze regime: stops widened for amplified moves")
    elif aux.gamma_regime == "SUPPRESSED":
        alerts.append("Suppressed gamma: stops tightened")
    if aux.liquidity_bias == "ACCUMULATION":
        alerts.append("Shadow liquidity accumulation detected")
    elif aux.liquidity_bias == "DISTRIBUTION":
        alerts.append("Shadow liquidity distribution detected")
    if trap:
        alerts.append(f"Reversal trap risk {aux.trap_risk:.0f}: entry pulled back")
    if aux.volatility_regime in (VolatilityRegime.HIGH, VolatilityRegime.EXTREME):
        alerts.append(f"High volatility alert: {aux.volatility_regime.value} regime")

    stop_side = "below" if sign > 0 else "above"
    rationale_parts = [f"{direction.value} {ticker} at confidence {score:.0f}"]
    if sector:
        rationale_parts[0] += f" ({sector})"
    rationale_parts.extend(reasons)
    rationale_parts.extend(notes)
    rationale_parts.extend(alerts)
    rationale_parts.append(
        f"Stop {distance:.1%} {stop_side} entry ({stop_source}, padding x{state.stop_loss_padding:.2f})"
    )

    return TradePlan(
        ticker=ticker,
        direction=direction,
        entry_primary=entry,
        entry_secondary=secondary,
        stop_loss=stop,
        soft_stop=soft_stop,
        take_profit_1=tp1,
        take_profit_2=tp2,
        take_profit_3=tp3,
        allocation_percent=allocation,
        max_allocation=max_allocation,
        risk_reward_ratio=round(risk_reward, 2),
        stop_distance_pct=round(distance * 100, 2),
        time_horizon=time_horizon(tier, aux),
        alerts=alerts,
        rationale=" | ".join(rationale_parts),
    )
