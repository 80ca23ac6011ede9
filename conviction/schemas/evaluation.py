"""Evaluation request schemas."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator

from conviction.engine.schemas import (
    Signal,
    SignalGroup,
    SignalSnapshot,
    TradeDirection,
    VolatilityProfile,
)


class SignalInput(BaseModel):
    """One source's reading as submitted by a caller.

    ``value`` is deliberately untyped: malformed readings are kept and
    treated as neutral by the engine instead of rejecting the request.
    """

    value: Any = None
    group: SignalGroup | None = None
    as_of: datetime | None = Field(
        None, validation_alias=AliasChoices("as_of", "asOf", "timestamp")
    )
    meta: dict[str, float] = Field(default_factory=dict)


class EvaluationRequest(BaseModel):
    """Evaluate one ticker from a caller-supplied signal map."""

    ticker: str = Field(..., min_length=1, max_length=20, description="Ticker symbol")
    price: float = Field(..., description="Current price; <= 0 yields a no-trade plan")
    tier: str | None = Field(None, description="Asset tier, e.g. blue_chip, crypto_alpha")
    sector: str | None = None
    regime: str | None = Field(
        None, description="RISK_ON, RISK_OFF, RECOVERY or BUBBLE (unknown -> RISK_ON)"
    )
    volatility_profile: VolatilityProfile | None = None
    direction: TradeDirection = TradeDirection.LONG
    base_score: float | None = Field(
        None, ge=0, le=100, description="Upstream confidence; defaults to the consensus score"
    )
    as_of: datetime | None = None
    signals: dict[str, SignalInput] = Field(
        default_factory=dict, description="source_id -> signal; absent sources are simply missing"
    )

    @field_validator("ticker", mode="before")
    @classmethod
    def uppercase_ticker(cls, v: str) -> str:
        return str(v).upper().strip()

    @field_validator("signals", mode="before")
    @classmethod
    def wrap_bare_values(cls, v: Any) -> Any:
        # Accept {"fsi": 72} as shorthand for {"fsi": {"value": 72}}
        if not isinstance(v, dict):
            return v
        return {
            source_id: entry if isinstance(entry, dict) else {"value": entry}
            for source_id, entry in v.items()
        }

    def to_snapshot(self, taken_at: datetime | None = None) -> SignalSnapshot:
        taken_at = taken_at or self.as_of or datetime.now(UTC)
        return SignalSnapshot(
            ticker=self.ticker,
            signals={
                source_id: Signal(
                    source_id=source_id,
                    ticker=self.ticker,
                    value=entry.value,
                    group=entry.group,
                    timestamp=entry.as_of or taken_at,
                    meta=entry.meta,
                )
                for source_id, entry in self.signals.items()
            },
            taken_at=taken_at,
        )
