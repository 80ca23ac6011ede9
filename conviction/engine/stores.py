"""
Learning stores.

- DatabaseLearningStore: SQLAlchemy repositories, retried with tenacity
- InMemoryLearningStore: process-local, guarded by an asyncio lock

Both claim an outcome and apply its weight/parameter nudges as one
atomic step, so each outcome is consumed exactly once.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from conviction.core.config import settings
from conviction.core.exceptions import PersistenceUnavailableError
from conviction.core.logging import get_logger
from conviction.database.connection import get_session
from conviction.engine.config import (
    DEFAULT_ADAPTATIONS,
    DEFAULT_LEARNING_CONFIG,
    STOP_LOSS_PADDING,
    LearningConfig,
)
from conviction.engine.learning import (
    LearningUpdate,
    adapt_stop_loss_padding,
    nudge_weight,
    plan_update,
)
from conviction.engine.schemas import TradeOutcome
from conviction.engine.state import (
    AdaptationParam,
    LearningState,
    LearningStore,
    SectorStat,
    StateProvider,
    WeightStat,
    default_params,
)
from conviction.repositories import (
    engine_weights_orm,
    system_adaptations_orm,
    trade_outcomes_orm,
)

logger = get_logger("engine.stores")

T = TypeVar("T")

# Connection-level failures worth retrying; anything else is a bug
TRANSIENT_ERRORS = (OperationalError, InterfaceError, ConnectionError, OSError, TimeoutError)


class DatabaseLearningStore:
    """LearningStore backed by the SQLAlchemy repositories.

    Transient database failures are retried with exponential backoff; once
    retries are exhausted they surface as ``PersistenceUnavailableError``.
    State loads for evaluations use their own, smaller ``read_attempts``
    budget.
    """

    def __init__(
        self,
        config: LearningConfig = DEFAULT_LEARNING_CONFIG,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        retry_max_delay: float | None = None,
        read_attempts: int | None = None,
    ):
        self.config = config
        self.retry_attempts = retry_attempts or settings.outcome_retry_attempts
        self.retry_delay = settings.outcome_retry_delay if retry_delay is None else retry_delay
        self.retry_max_delay = (
            settings.outcome_retry_max_delay if retry_max_delay is None else retry_max_delay
        )
        self.read_attempts = read_attempts or settings.state_read_attempts

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        action: str,
        attempts: int | None = None,
    ) -> T:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts or self.retry_attempts),
                wait=wait_exponential_jitter(
                    multiplier=self.retry_delay,
                    max=self.retry_max_delay,
                    jitter=self.retry_delay,
                ),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    return await operation()
        except TRANSIENT_ERRORS as e:
            logger.error(f"Learning store unavailable during {action}: {e}")
            raise PersistenceUnavailableError(
                message=f"Weight store unavailable during {action}",
                details={"action": action},
            ) from e

    async def ensure_defaults(self) -> None:
        """Insert missing default adaptation parameters."""

        async def _seed() -> None:
            async with get_session() as session:
                await system_adaptations_orm.seed_defaults(session)
                await session.commit()

        await self._with_retry(_seed, "seed_defaults")

    async def load_state(self) -> LearningState:
        async def _load() -> LearningState:
            since = datetime.now(UTC) - timedelta(days=self.config.sector_lookback_days)
            async with get_session() as session:
                weights = await engine_weights_orm.list_weights(session)
                params = await system_adaptations_orm.list_adaptations(session)
                sectors = await trade_outcomes_orm.sector_performance(session, since=since)
                samples = await trade_outcomes_orm.calibration_samples(
                    session, limit=self.config.calibration_window
                )

            adaptations = default_params()
            adaptations.update({p.param_key: p.value for p in params})
            return LearningState(
                weights={
                    w.source_id: WeightStat(w.source_id, w.weight, w.wins, w.losses, w.updated_at)
                    for w in weights
                },
                adaptations=adaptations,
                sector_performance={
                    sector: SectorStat(wins, total, avg_pnl)
                    for sector, (wins, total, avg_pnl) in sectors.items()
                },
                calibration_samples=tuple(samples),
            )

        return await self._with_retry(_load, "load_state", attempts=self.read_attempts)

    async def record_outcome(self, outcome: TradeOutcome) -> tuple[int, bool]:
        async def _record() -> tuple[int, bool]:
            async with get_session() as session:
                result = await trade_outcomes_orm.submit_outcome(
                    session,
                    outcome_key=outcome.outcome_key,
                    ticker=outcome.ticker,
                    pnl_percent=outcome.pnl_percent,
                    contributing_source_ids=outcome.contributing_source_ids,
                    closed_at=outcome.closed_at,
                    sector=outcome.sector,
                    predicted_confidence=outcome.predicted_confidence,
                )
                await session.commit()
                return result

        return await self._with_retry(_record, "record_outcome")

    async def apply_outcome(
        self, outcome_id: int, config: LearningConfig | None = None
    ) -> LearningUpdate | None:
        config = config or self.config

        async def _apply() -> LearningUpdate | None:
            async with get_session() as session:
                record = await trade_outcomes_orm.get_outcome(session, outcome_id)
                if record is None:
                    logger.warning(f"Outcome {outcome_id} not found")
                    return None
                if not await trade_outcomes_orm.claim_outcome(session, outcome_id):
                    await session.rollback()
                    return None

                update = plan_update(
                    outcome_id,
                    record.ticker,
                    record.pnl_percent,
                    record.contributing_source_ids or [],
                    config,
                )
                for source_id in update.source_ids:
                    await engine_weights_orm.nudge_weight(session, source_id, update.win, config)
                if update.padding_factor is not None:
                    await system_adaptations_orm.adapt_param(
                        session,
                        STOP_LOSS_PADDING,
                        update.padding_factor,
                        config.padding_floor,
                        config.padding_ceiling,
                    )
                await session.commit()
                return update

        return await self._with_retry(_apply, "apply_outcome")

    async def pending_outcome_ids(self, limit: int = 200) -> list[int]:
        async def _pending() -> list[int]:
            async with get_session() as session:
                return await trade_outcomes_orm.pending_outcome_ids(session, limit)

        return await self._with_retry(_pending, "pending_outcome_ids")

    async def list_weights(self) -> list[WeightStat]:
        async def _list() -> list[WeightStat]:
            async with get_session() as session:
                rows = await engine_weights_orm.list_weights(session)
            return [WeightStat(r.source_id, r.weight, r.wins, r.losses, r.updated_at) for r in rows]

        return await self._with_retry(_list, "list_weights")

    async def list_adaptations(self) -> list[AdaptationParam]:
        async def _list() -> list[AdaptationParam]:
            async with get_session() as session:
                rows = await system_adaptations_orm.list_adaptations(session)
            return [
                AdaptationParam(r.param_key, r.value, r.description, r.updated_at) for r in rows
            ]

        return await self._with_retry(_list, "list_adaptations")


@dataclass
class _QueuedOutcome:
    outcome_id: int
    outcome: TradeOutcome
    processed_at: datetime | None = None


class InMemoryLearningStore:
    """Process-local LearningStore with the same semantics as the database one."""

    def __init__(
        self,
        weights: Iterable[WeightStat] = (),
        adaptations: Mapping[str, float] | None = None,
        config: LearningConfig = DEFAULT_LEARNING_CONFIG,
    ):
        self.config = config
        self._weights: dict[str, WeightStat] = {w.source_id: w for w in weights}
        self._adaptations: dict[str, AdaptationParam] = {
            key: AdaptationParam(key, value, description)
            for key, (value, description) in DEFAULT_ADAPTATIONS.items()
        }
        for key, value in (adaptations or {}).items():
            description = DEFAULT_ADAPTATIONS.get(key, (None, None))[1]
            self._adaptations[key] = AdaptationParam(key, value, description)
        self._outcomes: dict[int, _QueuedOutcome] = {}
        self._keys: dict[str, int] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def load_state(self) -> LearningState:
        async with self._lock:
            since = datetime.now(UTC) - timedelta(days=self.config.sector_lookback_days)
            processed = sorted(
                (q for q in self._outcomes.values() if q.processed_at is not None),
                key=lambda q: (q.processed_at, q.outcome_id),
                reverse=True,
            )

            sectors: dict[str, list[float]] = {}
            for queued in processed:
                outcome = queued.outcome
                if outcome.sector and outcome.closed_at >= since:
                    sectors.setdefault(outcome.sector, []).append(outcome.pnl_percent)

            samples = [
                (q.outcome.predicted_confidence, q.outcome.pnl_percent > 0)
                for q in processed
                if q.outcome.predicted_confidence is not None
            ][: self.config.calibration_window]

            return LearningState(
                weights=dict(self._weights),
                adaptations={key: p.value for key, p in self._adaptations.items()},
                sector_performance={
                    sector: SectorStat(
                        wins=sum(1 for pnl in pnls if pnl > 0),
                        total=len(pnls),
                        avg_pnl=sum(pnls) / len(pnls),
                    )
                    for sector, pnls in sectors.items()
                },
                calibration_samples=tuple(samples),
            )

    async def record_outcome(self, outcome: TradeOutcome) -> tuple[int, bool]:
        async with self._lock:
            existing = self._keys.get(outcome.outcome_key)
            if existing is not None:
                logger.info(f"Duplicate outcome submission {outcome.outcome_key} ignored")
                return existing, False
            outcome_id = self._next_id
            self._next_id += 1
            self._outcomes[outcome_id] = _QueuedOutcome(outcome_id, outcome)
            self._keys[outcome.outcome_key] = outcome_id
            return outcome_id, True

    async def apply_outcome(
        self, outcome_id: int, config: LearningConfig | None = None
    ) -> LearningUpdate | None:
        config = config or self.config
        async with self._lock:
            queued = self._outcomes.get(outcome_id)
            if queued is None or queued.processed_at is not None:
                return None

            outcome = queued.outcome
            update = plan_update(
                outcome_id,
                outcome.ticker,
                outcome.pnl_percent,
                outcome.contributing_source_ids,
                config,
            )
            now = datetime.now(UTC)
            for source_id in update.source_ids:
                stat = self._weights.get(source_id) or WeightStat(source_id, config.default_weight)
                self._weights[source_id] = WeightStat(
                    source_id=source_id,
                    weight=nudge_weight(stat.weight, update.win, config),
                    wins=stat.wins + (1 if update.win else 0),
                    losses=stat.losses + (0 if update.win else 1),
                    updated_at=now,
                )

            padding = self._adaptations[STOP_LOSS_PADDING]
            self._adaptations[STOP_LOSS_PADDING] = replace(
                padding,
                value=adapt_stop_loss_padding(padding.value, outcome.pnl_percent, config),
                updated_at=now if update.padding_factor is not None else padding.updated_at,
            )
            queued.processed_at = now
            return update

    async def pending_outcome_ids(self, limit: int = 200) -> list[int]:
        async with self._lock:
            pending = [q.outcome_id for q in self._outcomes.values() if q.processed_at is None]
            return sorted(pending)[:limit]

    async def list_weights(self) -> list[WeightStat]:
        async with self._lock:
            return [self._weights[key] for key in sorted(self._weights)]

    async def list_adaptations(self) -> list[AdaptationParam]:
        async with self._lock:
            return [self._adaptations[key] for key in sorted(self._adaptations)]


# =============================================================================
# Process-wide instances
# =============================================================================

_learning_store: LearningStore | None = None
_state_provider: StateProvider | None = None


def get_learning_store() -> LearningStore:
    """Get the process-wide learning store (database-backed by default)."""
    global _learning_store
    if _learning_store is None:
        _learning_store = DatabaseLearningStore()
    return _learning_store


def get_state_provider() -> StateProvider:
    """Get the process-wide state provider."""
    global _state_provider
    if _state_provider is None:
        _state_provider = StateProvider(get_learning_store())
    return _state_provider


def set_learning_store(store: LearningStore | None) -> None:
    """Replace the process-wide store (and drop the cached provider)."""
    global _learning_store, _state_provider
    _learning_store = store
    _state_provider = None
