"""
Engine tuning constants.

Every numeric threshold used by consensus, recalibration, trade planning
and the learning loop lives here. Functions take an optional config
instance so a caller can override a single value without monkeypatching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


# =============================================================================
# CONSENSUS
# =============================================================================


@dataclass(frozen=True)
class ConsensusConfig:
    """Regime weight vectors and tiering thresholds for the consensus engine."""

    # Each vector sums to 1.0 and every weight is positive, so raising any
    # group value can never lower the blended score.
    regime_weights: Mapping[str, Mapping[str, float]] = field(
        default_factory=lambda: {
            "RISK_ON": {
                "technical": 0.30,
                "sentiment": 0.25,
                "macro": 0.15,
                "insider": 0.15,
                "valuation": 0.15,
            },
            "RISK_OFF": {
                "valuation": 0.30,
                "macro": 0.25,
                "insider": 0.20,
                "technical": 0.15,
                "sentiment": 0.10,
            },
            "RECOVERY": {
                "insider": 0.25,
                "valuation": 0.25,
                "technical": 0.20,
                "macro": 0.15,
                "sentiment": 0.15,
            },
            "BUBBLE": {
                "macro": 0.25,
                "valuation": 0.25,
                "technical": 0.20,
                "insider": 0.15,
                "sentiment": 0.15,
            },
        }
    )
    default_regime: str = "RISK_ON"

    neutral_value: float = 50.0

    # Stress override: volatility proxy above threshold subtracts a flat penalty
    stress_threshold: float = 25.0
    stress_penalty: float = 15.0

    high_tier_min: int = 80
    medium_tier_min: int = 60

    # Macro group bonus when sector and regime line up
    alignment_bonus: float = 10.0
    growth_sectors: tuple[str, ...] = (
        "Technology",
        "Communication Services",
        "Consumer Cyclical",
    )
    defensive_sectors: tuple[str, ...] = (
        "Healthcare",
        "Utilities",
        "Consumer Defensive",
        "Energy",
        "Financial",
        "Industrials",
        "Aerospace & Defense",
    )

    # Labelled classifications mapped onto the 0-100 scale
    classification_scores: Mapping[str, float] = field(
        default_factory=lambda: {
            "STRONG_BULLISH": 90.0,
            "BULLISH": 75.0,
            "NEUTRAL": 50.0,
            "BEARISH": 25.0,
            "STRONG_BEARISH": 10.0,
            "STRONG_BUY": 85.0,
            "BUY": 70.0,
            "HOLD": 50.0,
            "SELL": 30.0,
            "STRONG_SELL": 15.0,
            "ACCUMULATION": 70.0,
            "DISTRIBUTION": 30.0,
            "OPPORTUNISTIC": 75.0,
            "COORDINATED": 70.0,
            "ROUTINE": 50.0,
            "GREEN": 75.0,
            "YELLOW": 50.0,
            "RED": 25.0,
            "RISK_ON": 65.0,
            "RISK_OFF": 35.0,
            "RECOVERY": 60.0,
            "BUBBLE": 40.0,
        }
    )


# =============================================================================
# RECALIBRATION
# =============================================================================


@dataclass(frozen=True)
class RecalibrationConfig:
    """Multiplier tables for the ordered recalibration stages."""

    min_score: int = 1
    max_score: int = 99

    # No single stage may move confidence outside this band
    stage_floor: float = 0.25
    stage_ceiling: float = 1.5

    # 1. Agent reliability: 1 + (avg_win_rate - 0.5) * gain, clamped
    reliability_min_samples: int = 5
    reliability_gain: float = 0.5
    reliability_floor: float = 0.8
    reliability_ceiling: float = 1.2

    # 2. Sector bias (win rate in percent -> multiplier)
    sector_min_samples: int = 5
    sector_strong_edge: tuple[float, float] = (65.0, 1.15)
    sector_slight_edge: tuple[float, float] = (55.0, 1.05)
    sector_strong_weakness: tuple[float, float] = (35.0, 0.85)
    sector_slight_weakness: tuple[float, float] = (45.0, 0.95)
    sector_negative_pnl_cap: float = 0.95

    # 3. Drawdown sensitivity per asset tier
    tier_drawdown_multipliers: Mapping[str, float] = field(
        default_factory=lambda: {
            "blue_chip": 1.0,
            "sector_play": 0.97,
            "explosive_growth": 0.95,
            "insider_play": 0.93,
            "crypto_alpha": 0.90,
        }
    )

    # 4. Volatility shock per regime
    volatility_multipliers: Mapping[str, float] = field(
        default_factory=lambda: {
            "LOW": 1.0,
            "NORMAL": 1.0,
            "HIGH": 0.8,
            "EXTREME": 0.5,
        }
    )

    # 5. Seasonal / calendar
    month_multipliers: Mapping[int, float] = field(
        default_factory=lambda: {9: 0.95, 12: 1.03}
    )
    earnings_season_months: tuple[int, ...] = (1, 4, 7, 10)
    earnings_season_multiplier: float = 0.95
    calendar_event_multiplier: float = 1.0

    # 6. Drift correction: 1 + (realized_win_rate - mean_predicted) * gain
    drift_min_samples: int = 10
    drift_gain: float = 0.5
    drift_floor: float = 0.85
    drift_ceiling: float = 1.15


# =============================================================================
# TRADE PLAN
# =============================================================================


@dataclass(frozen=True)
class PlanConfig:
    """Sizing, stop and target parameters for the trade plan constructor."""

    # Kelly win probability: base + ((confidence - conviction_threshold) / span) * slope
    win_prob_base: float = 0.55
    win_prob_slope: float = 0.20
    confidence_span: float = 30.0

    tier_risk_reward: Mapping[str, float] = field(
        default_factory=lambda: {"crypto_alpha": 3.0, "blue_chip": 1.5}
    )
    default_risk_reward: float = 2.0

    # (kelly scalar, tier cap in percent)
    tier_sizing: Mapping[str, tuple[float, float]] = field(
        default_factory=lambda: {
            "blue_chip": (0.6, 8.0),
            "explosive_growth": (0.4, 5.0),
            "sector_play": (0.4, 4.0),
            "crypto_alpha": (0.25, 2.5),
            "insider_play": (0.25, 2.5),
        }
    )
    default_sizing: tuple[float, float] = (0.5, 5.0)

    volatility_size_scalars: Mapping[str, float] = field(
        default_factory=lambda: {"Low": 1.0, "Medium": 0.8, "High": 0.5}
    )

    # Size modifiers
    insider_boost_labels: tuple[str, ...] = ("OPPORTUNISTIC", "COORDINATED")
    insider_boost: float = 1.25
    risk_off_size: float = 0.5
    extreme_volatility_size: float = 0.5
    trap_size: float = 0.8
    calendar_event_size: float = 0.75

    # Stop distance (fraction of entry)
    tier_stop_pct: Mapping[str, float] = field(
        default_factory=lambda: {
            "blue_chip": 0.05,
            "sector_play": 0.07,
            "insider_play": 0.08,
            "explosive_growth": 0.10,
            "crypto_alpha": 0.15,
        }
    )
    default_stop_pct: float = 0.07
    profile_stop_scalars: Mapping[str, float] = field(
        default_factory=lambda: {"Low": 0.8, "Medium": 1.0, "High": 1.2}
    )
    atr_stop_multiple: float = 1.5
    gamma_stop_modifiers: Mapping[str, float] = field(
        default_factory=lambda: {"AMPLIFIED": 1.5, "SUPPRESSED": 0.8}
    )
    tier_stop_modifiers: Mapping[str, float] = field(
        default_factory=lambda: {
            "blue_chip": 0.9,
            "explosive_growth": 1.3,
            "crypto_alpha": 1.3,
        }
    )
    volatility_stop_modifiers: Mapping[str, float] = field(
        default_factory=lambda: {"LOW": 0.8, "NORMAL": 1.0, "HIGH": 1.3, "EXTREME": 1.5}
    )
    trap_threshold: float = 60.0
    trap_default_buffer_pct: float = 2.0
    min_stop_pct: float = 0.005
    max_stop_pct: float = 0.5
    soft_stop_fraction: float = 0.6

    # Targets: multiples of risk distance, steepened per tier
    target_multiples: tuple[float, float, float] = (1.0, 2.0, 3.0)
    tier_ladder_multipliers: Mapping[str, float] = field(
        default_factory=lambda: {
            "blue_chip": 1.0,
            "sector_play": 1.1,
            "insider_play": 1.2,
            "explosive_growth": 1.3,
            "crypto_alpha": 1.5,
        }
    )
    narrative_reward_threshold: float = 75.0
    narrative_reward: float = 1.3
    risk_off_reward: float = 0.7

    # Entries (fraction of price on the favourable side)
    trap_entry_offset: float = 0.02
    trap_secondary_offset: float = 0.05
    default_secondary_offset: float = 0.02
    accumulation_secondary_offset: float = 0.01


# =============================================================================
# LEARNING LOOP
# =============================================================================


@dataclass(frozen=True)
class LearningConfig:
    """Nudge sizes and clamps for outcome-driven adaptation."""

    default_weight: float = 1.0
    win_multiplier: float = 1.05
    loss_multiplier: float = 0.95
    min_weight: float = 0.1
    max_weight: float = 2.0

    large_loss_threshold: float = -5.0
    padding_widen: float = 1.02
    padding_ceiling: float = 1.5
    padding_tighten: float = 0.99
    padding_floor: float = 0.8

    sector_lookback_days: int = 180
    calibration_window: int = 50


STOP_LOSS_PADDING = "stop_loss_padding"
CONVICTION_THRESHOLD = "conviction_threshold"
MAX_ALLOCATION_CAP = "max_allocation_cap"

# (default value, description)
DEFAULT_ADAPTATIONS: dict[str, tuple[float, str]] = {
    STOP_LOSS_PADDING: (1.0, "Multiplier applied to every stop distance"),
    CONVICTION_THRESHOLD: (70.0, "Confidence at which Kelly sizing is anchored"),
    MAX_ALLOCATION_CAP: (15.0, "Hard ceiling on allocation_percent"),
}


DEFAULT_CONSENSUS_CONFIG = ConsensusConfig()
DEFAULT_RECALIBRATION_CONFIG = RecalibrationConfig()
DEFAULT_PLAN_CONFIG = PlanConfig()
DEFAULT_LEARNING_CONFIG = LearningConfig()
