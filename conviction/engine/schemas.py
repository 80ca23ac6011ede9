"""
Pydantic schemas for the conviction engine.

Signals, snapshots and every immutable result the pipeline emits.
"""

from __future__ import annotations

import math
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Enums
# =============================================================================


class SignalGroup(str, Enum):
    """Consensus group a signal source contributes to."""

    MACRO = "macro"
    TECHNICAL = "technical"
    SENTIMENT = "sentiment"
    INSIDER = "insider"
    VALUATION = "valuation"


class MacroRegime(str, Enum):
    RISK_ON = "RISK_ON"
    RISK_OFF = "RISK_OFF"
    RECOVERY = "RECOVERY"
    BUBBLE = "BUBBLE"


class ConfidenceTier(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class VolatilityProfile(str, Enum):
    """Coarse volatility bucket of the asset itself (drives sizing)."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TradeDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    FLAT = "FLAT"


class OutcomeResult(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"


# =============================================================================
# Signals
# =============================================================================


class Signal(BaseModel):
    """One normalized reading from one source about one ticker.

    ``value`` is either a number on the 0-100 scale or a short label
    (e.g. ``"BULLISH"``). Anything else is kept as ``None`` so a malformed
    reading degrades to neutral instead of failing validation.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    ticker: str
    value: float | str | None = None
    group: SignalGroup | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    meta: dict[str, float] = Field(default_factory=dict)

    @field_validator("ticker", mode="before")
    @classmethod
    def uppercase_ticker(cls, v: str) -> str:
        return str(v).upper().strip()

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> float | str | None:
        if isinstance(v, bool) or v is None:
            return None
        if isinstance(v, (int, float)):
            return float(v)
        if isinstance(v, str):
            return v.strip() or None
        return None

    @property
    def numeric(self) -> float | None:
        """Finite numeric value, or None for labels and NaN/inf."""
        if isinstance(self.value, float) and math.isfinite(self.value):
            return self.value
        return None

    @property
    def label(self) -> str | None:
        """Upper-cased classification label, or None for numeric values."""
        if isinstance(self.value, str):
            return self.value.upper().replace(" ", "_").replace("-", "_")
        return None


class SignalSnapshot(BaseModel):
    """Every signal read for one decision, captured once at decision start."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    signals: dict[str, Signal] = Field(default_factory=dict)
    taken_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def get(self, source_id: str) -> Signal | None:
        return self.signals.get(source_id)

    @property
    def source_ids(self) -> list[str]:
        return sorted(self.signals)


# =============================================================================
# Results
# =============================================================================


class ConsensusResult(BaseModel):
    """Blended 0-100 score with its per-group breakdown."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    final_score: int = Field(..., ge=0, le=100)
    breakdown: dict[str, float] = Field(default_factory=dict)
    regime: MacroRegime = MacroRegime.RISK_ON
    regime_adjustment: float = 0.0
    confidence_tier: ConfidenceTier = ConfidenceTier.LOW
    details: list[str] = Field(default_factory=list)
    signal_count: int = 0


class AppliedFactor(BaseModel):
    """One recalibration stage that moved the score."""

    model_config = ConfigDict(frozen=True)

    name: str
    multiplier: float
    reason: str


class RecalibratedConfidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=1, le=99)
    base_score: float
    applied_factors: list[AppliedFactor] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        return [factor.reason for factor in self.applied_factors]


class TradePlan(BaseModel):
    """Concrete, risk-bounded action derived from a calibrated confidence."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    direction: TradeDirection
    entry_primary: float
    entry_secondary: float
    stop_loss: float
    soft_stop: float
    take_profit_1: float
    take_profit_2: float
    take_profit_3: float
    allocation_percent: float = Field(..., ge=0)
    max_allocation: float = Field(..., ge=0)
    risk_reward_ratio: float
    stop_distance_pct: float = 0.0
    time_horizon: str = ""
    alerts: list[str] = Field(default_factory=list)
    rationale: str = ""

    @property
    def is_trade(self) -> bool:
        return self.direction != TradeDirection.FLAT and self.allocation_percent > 0


class TradeOutcome(BaseModel):
    """A closed position reported back for learning."""

    ticker: str = Field(..., min_length=1, max_length=20, description="Ticker symbol")
    pnl_percent: float
    contributing_source_ids: list[str] = Field(default_factory=list)
    closed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    sector: str | None = None
    predicted_confidence: int | None = Field(None, ge=1, le=99)
    outcome_key: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        min_length=1,
        max_length=200,
        description="Dedupe key; resubmitting the same key is a no-op",
    )

    @field_validator("ticker", mode="before")
    @classmethod
    def uppercase_ticker(cls, v: str) -> str:
        return str(v).upper().strip()

    @field_validator("closed_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v.replace(tzinfo=UTC) if v.tzinfo is None else v

    @field_validator("pnl_percent")
    @classmethod
    def finite_pnl(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("pnl_percent must be finite")
        return v

    @field_validator("contributing_source_ids")
    @classmethod
    def dedupe_sources(cls, v: list[str]) -> list[str]:
        # Set semantics, first-seen order
        seen: dict[str, None] = {}
        for source_id in v:
            source_id = source_id.strip()
            if source_id:
                seen.setdefault(source_id, None)
        return list(seen)

    @property
    def result(self) -> OutcomeResult:
        return OutcomeResult.WIN if self.pnl_percent > 0 else OutcomeResult.LOSS



class EvaluationResult(BaseModel):
    """Consensus, confidence and plan derived from one signal snapshot."""

    model_config = ConfigDict(frozen=True)

    evaluation_id: str
    ticker: str
    as_of: datetime
    consensus: ConsensusResult
    confidence: RecalibratedConfidence
    plan: TradePlan
    signal_sources: list[str] = Field(default_factory=list)
    state_is_fallback: bool = False
