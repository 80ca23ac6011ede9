"""
Signal providers and snapshot collection.

A decision reads its signals exactly once, through ``collect_signals``;
everything downstream works off the returned ``SignalSnapshot``.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from conviction.core.logging import get_logger
from conviction.engine.schemas import Signal, SignalGroup, SignalSnapshot, VolatilityRegime

logger = get_logger("engine.signals")


# Source id -> consensus group for the known analytical engines.
# A signal carrying its own ``group`` tag overrides this map.
DEFAULT_SOURCE_GROUPS: dict[str, SignalGroup] = {
    "gmf": SignalGroup.MACRO,
    "macro_regime": SignalGroup.MACRO,
    "technical": SignalGroup.TECHNICAL,
    "mbe": SignalGroup.TECHNICAL,
    "uoa": SignalGroup.TECHNICAL,
    "sentiment": SignalGroup.SENTIMENT,
    "narrative_pressure": SignalGroup.SENTIMENT,
    "gnae": SignalGroup.SENTIMENT,
    "insider_intent": SignalGroup.INSIDER,
    "ipe": SignalGroup.INSIDER,
    "hapde": SignalGroup.INSIDER,
    "ife": SignalGroup.INSIDER,
    "fsi": SignalGroup.VALUATION,
    "dve": SignalGroup.VALUATION,
    "ace": SignalGroup.VALUATION,
}


def resolve_group(
    signal: Signal,
    source_groups: dict[str, SignalGroup] | None = None,
) -> SignalGroup | None:
    """Consensus group for a signal, or None for auxiliary-only sources."""
    if signal.group is not None:
        return signal.group
    groups = DEFAULT_SOURCE_GROUPS if source_groups is None else source_groups
    return groups.get(signal.source_id)


# =============================================================================
# Providers
# =============================================================================


@runtime_checkable
class SignalProvider(Protocol):
    """Anything that can produce one signal for a ticker."""

    @property
    def source_id(self) -> str:
        ...

    @property
    def group(self) -> SignalGroup | None:
        ...

    async def fetch(self, ticker: str) -> Signal | None:
        """Return the current reading, or None when the source has nothing."""
        ...


class StaticSignalProvider:
    """Wraps an already-known value as a provider."""

    def __init__(
        self,
        source_id: str,
        value: float | str | None,
        group: SignalGroup | None = None,
        meta: dict[str, float] | None = None,
    ):
        self._source_id = source_id
        self._group = group
        self._value = value
        self._meta = meta or {}

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def group(self) -> SignalGroup | None:
        return self._group

    async def fetch(self, ticker: str) -> Signal | None:
        if self._value is None:
            return None
        return Signal(
            source_id=self._source_id,
            ticker=ticker,
            value=self._value,
            group=self._group,
            meta=self._meta,
        )


async def _fetch_safe(
    provider: SignalProvider, ticker: str, timeout: float
) -> Signal | None:
    """Fetch one signal; timeouts and errors mean "signal unavailable"."""
    try:
        signal = await asyncio.wait_for(provider.fetch(ticker), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            f"Signal provider {provider.source_id} timed out for {ticker} after {timeout}s"
        )
        return None
    except Exception as e:
        logger.warning(f"Signal provider {provider.source_id} failed for {ticker}: {e}")
        return None

    if signal is None:
        logger.debug(f"Signal provider {provider.source_id} had no reading for {ticker}")
        return None
    if signal.group is None and provider.group is not None:
        signal = signal.model_copy(update={"group": provider.group})
    return signal


async def collect_signals(
    ticker: str,
    providers: list[SignalProvider],
    timeout: float = 5.0,
) -> SignalSnapshot:
    """
    Query every provider concurrently and freeze the results.

    Args:
        ticker: Symbol to evaluate
        providers: Signal sources; each call is bounded by ``timeout``
        timeout: Seconds allowed per provider

    Returns:
        SignalSnapshot holding every signal that arrived in time
    """
    ticker = ticker.upper().strip()
    results = await asyncio.gather(
        *(_fetch_safe(provider, ticker, timeout) for provider in providers)
    )

    signals: dict[str, Signal] = {}
    for signal in results:
        if signal is not None:
            signals[signal.source_id] = signal

    missing = len(providers) - len(signals)
    if missing:
        logger.warning(f"{missing} of {len(providers)} signals unavailable for {ticker}")

    return SignalSnapshot(ticker=ticker, signals=signals, taken_at=datetime.now(UTC))


# =============================================================================
# Auxiliary signals
# =============================================================================


class AuxiliarySignals(BaseModel):
    """Well-known non-consensus readings pulled from a snapshot.

    Every field is optional; a missing reading leaves its stage neutral.
    """

    model_config = ConfigDict(frozen=True)

    volatility_index: float | None = None
    volatility_regime: VolatilityRegime | None = None
    atr_pct: float | None = None
    trap_risk: float | None = None
    trap_buffer_pct: float | None = None
    gamma_regime: str | None = None
    liquidity_bias: str | None = None
    narrative_pressure: float | None = None
    insider_intent: str | None = None
    calendar_event: str | None = None
    catalyst: str | None = None
    as_of: datetime | None = None

    def is_trap_zone(self, threshold: float = 60.0) -> bool:
        return self.trap_risk is not None and self.trap_risk >= threshold

    @property
    def has_calendar_event(self) -> bool:
        return self.calendar_event is not None and self.calendar_event != "NONE"

    @classmethod
    def from_snapshot(cls, snapshot: SignalSnapshot) -> "AuxiliarySignals":
        def numeric(source_id: str) -> float | None:
            signal = snapshot.get(source_id)
            return signal.numeric if signal else None

        def label(source_id: str) -> str | None:
            signal = snapshot.get(source_id)
            return signal.label if signal else None

        regime_label = label("volatility_regime")
        try:
            volatility_regime = VolatilityRegime(regime_label) if regime_label else None
        except ValueError:
            logger.warning(f"Unknown volatility regime {regime_label!r} for {snapshot.ticker}")
            volatility_regime = None

        trap = snapshot.get("reversal_trap")
        trap_buffer = trap.meta.get("trap_buffer_pct") if trap else None

        return cls(
            volatility_index=numeric("volatility_index"),
            volatility_regime=volatility_regime,
            atr_pct=numeric("atr_pct"),
            trap_risk=trap.numeric if trap else None,
            trap_buffer_pct=trap_buffer,
            gamma_regime=label("gamma_regime"),
            liquidity_bias=label("shadow_liquidity"),
            narrative_pressure=numeric("narrative_pressure"),
            insider_intent=label("insider_intent"),
            calendar_event=label("calendar_event"),
            catalyst=label("catalyst"),
            as_of=snapshot.taken_at,
        )
