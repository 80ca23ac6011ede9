"""
Learning state: the weights and parameters an evaluation reads.

Evaluations read one immutable ``LearningState`` through a
``StateProvider``; only the learning loop writes, through a
``LearningStore`` (see ``conviction.engine.stores``).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from conviction.core.config import settings
from conviction.core.logging import get_logger
from conviction.engine.config import (
    CONVICTION_THRESHOLD,
    DEFAULT_ADAPTATIONS,
    DEFAULT_LEARNING_CONFIG,
    MAX_ALLOCATION_CAP,
    STOP_LOSS_PADDING,
    LearningConfig,
)
from conviction.engine.learning import LearningUpdate
from conviction.engine.schemas import TradeOutcome

logger = get_logger("engine.state")


# =============================================================================
# State snapshot
# =============================================================================


@dataclass(frozen=True)
class WeightStat:
    source_id: str
    weight: float
    wins: int = 0
    losses: int = 0
    updated_at: datetime | None = None

    @property
    def samples(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float | None:
        """Fraction of wins (0-1), None without history."""
        if self.samples == 0:
            return None
        return self.wins / self.samples


@dataclass(frozen=True)
class SectorStat:
    wins: int
    total: int
    avg_pnl: float

    @property
    def win_rate(self) -> float:
        """Win rate in percent."""
        return (self.wins / self.total) * 100 if self.total else 0.0


@dataclass(frozen=True)
class AdaptationParam:
    param_key: str
    value: float
    description: str | None = None
    updated_at: datetime | None = None


def default_params() -> dict[str, float]:
    return {key: value for key, (value, _) in DEFAULT_ADAPTATIONS.items()}


@dataclass(frozen=True)
class LearningState:
    """Everything learned so far, frozen at one point in time."""

    weights: Mapping[str, WeightStat] = field(default_factory=dict)
    adaptations: Mapping[str, float] = field(default_factory=default_params)
    sector_performance: Mapping[str, SectorStat] = field(default_factory=dict)
    # Most recent first: (predicted_confidence, won)
    calibration_samples: tuple[tuple[int, bool], ...] = ()
    loaded_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_fallback: bool = False

    @classmethod
    def defaults(cls, is_fallback: bool = False) -> "LearningState":
        return cls(is_fallback=is_fallback)

    def param(self, key: str) -> float:
        if key in self.adaptations:
            return self.adaptations[key]
        return DEFAULT_ADAPTATIONS[key][0]

    @property
    def stop_loss_padding(self) -> float:
        return self.param(STOP_LOSS_PADDING)

    @property
    def conviction_threshold(self) -> float:
        return self.param(CONVICTION_THRESHOLD)

    @property
    def max_allocation_cap(self) -> float:
        return self.param(MAX_ALLOCATION_CAP)

    def weight_values(self) -> dict[str, float]:
        return {source_id: stat.weight for source_id, stat in self.weights.items()}


# =============================================================================
# Stores
# =============================================================================


@runtime_checkable
class LearningStore(Protocol):
    """Persistence seam for weights, parameters and the outcome queue."""

    async def load_state(self) -> LearningState:
        ...

    async def record_outcome(self, outcome: TradeOutcome) -> tuple[int, bool]:
        """Queue an outcome. Returns (outcome_id, created)."""
        ...

    async def apply_outcome(
        self, outcome_id: int, config: LearningConfig = DEFAULT_LEARNING_CONFIG
    ) -> LearningUpdate | None:
        """Claim and apply one outcome atomically; None if already consumed."""
        ...

    async def pending_outcome_ids(self, limit: int = 200) -> list[int]:
        ...

    async def list_weights(self) -> list[WeightStat]:
        ...

    async def list_adaptations(self) -> list[AdaptationParam]:
        ...


# =============================================================================
# State provider
# =============================================================================


class StateProvider:
    """
    Cached read access to the learning state.

    A snapshot is reused until it is older than ``ttl`` seconds. When the
    store cannot be read, the last-known snapshot (or the defaults) is
    returned flagged ``is_fallback`` so evaluations keep working, and that
    fallback is served for ``failure_backoff`` seconds before the store is
    tried again.
    """

    def __init__(
        self,
        store: LearningStore,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        failure_backoff: float | None = None,
    ):
        self.store = store
        self.ttl = settings.state_cache_ttl if ttl is None else ttl
        self.failure_backoff = (
            settings.state_failure_backoff if failure_backoff is None else failure_backoff
        )
        self._clock = clock
        self._state: LearningState | None = None
        self._loaded_at: float | None = None
        self._lock = asyncio.Lock()

    def _fresh(self) -> bool:
        if self._state is None or self._loaded_at is None:
            return False
        max_age = self.failure_backoff if self._state.is_fallback else self.ttl
        return self._clock() - self._loaded_at < max_age

    async def get_state(self, force_refresh: bool = False) -> LearningState:
        if not force_refresh and self._fresh():
            return self._state

        async with self._lock:
            if not force_refresh and self._fresh():
                return self._state
            try:
                state = await self.store.load_state()
            except Exception as e:
                # Evaluations never fail on the store
                if self._state is not None:
                    logger.warning(f"Learning state reload failed, using last-known snapshot: {e}")
                    state = replace(self._state, is_fallback=True)
                else:
                    logger.warning(f"Learning state unavailable, using defaults: {e}")
                    state = LearningState.defaults(is_fallback=True)

            self._state = state
            self._loaded_at = self._clock()
            return state

    def invalidate(self) -> None:
        self._loaded_at = None
