"""
Outcome-driven learning loop.

Each closed trade nudges the weight of every source that contributed to
it (x1.05 on a win, x0.95 on a loss, clamped to [0.1, 2.0]) and slowly
adapts the global stop-loss padding. Updates are applied by the store in
one transaction together with the outcome claim, so an outcome is
consumed exactly once.

The fixed +/-5% step ignores trade magnitude and sample size; a
magnitude- or confidence-interval-aware rule is a possible refinement.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from conviction.core.logging import get_logger
from conviction.engine.config import (
    DEFAULT_LEARNING_CONFIG,
    STOP_LOSS_PADDING,
    LearningConfig,
)
from conviction.engine.schemas import OutcomeResult, TradeOutcome

if TYPE_CHECKING:
    from conviction.engine.state import LearningStore

logger = get_logger("engine.learning")


def classify_outcome(pnl_percent: float) -> OutcomeResult:
    """WIN strictly above zero; breakeven counts as a loss."""
    return OutcomeResult.WIN if pnl_percent > 0 else OutcomeResult.LOSS


def nudge_weight(
    current: float, win: bool, config: LearningConfig = DEFAULT_LEARNING_CONFIG
) -> float:
    factor = config.win_multiplier if win else config.loss_multiplier
    return min(config.max_weight, max(config.min_weight, current * factor))


def padding_factor(
    pnl_percent: float, config: LearningConfig = DEFAULT_LEARNING_CONFIG
) -> float | None:
    """Multiplier to apply to stop_loss_padding, or None to leave it alone.

    Large losses widen stops, wins tighten them, small losses change nothing.
    """
    if pnl_percent < config.large_loss_threshold:
        return config.padding_widen
    if pnl_percent > 0:
        return config.padding_tighten
    return None


def adapt_stop_loss_padding(
    current: float, pnl_percent: float, config: LearningConfig = DEFAULT_LEARNING_CONFIG
) -> float:
    factor = padding_factor(pnl_percent, config)
    if factor is None:
        return current
    return min(config.padding_ceiling, max(config.padding_floor, current * factor))


@dataclass(frozen=True)
class LearningUpdate:
    """What one outcome does to the stores."""

    outcome_id: int
    ticker: str
    result: OutcomeResult
    source_ids: tuple[str, ...]
    padding_factor: float | None

    @property
    def win(self) -> bool:
        return self.result == OutcomeResult.WIN

    @property
    def param_changes(self) -> dict[str, float]:
        if self.padding_factor is None:
            return {}
        return {STOP_LOSS_PADDING: self.padding_factor}


def plan_update(
    outcome_id: int,
    ticker: str,
    pnl_percent: float,
    source_ids: Iterable[str],
    config: LearningConfig = DEFAULT_LEARNING_CONFIG,
) -> LearningUpdate:
    # Sorted so concurrent updates lock rows in the same order
    unique_sources = tuple(sorted({s for s in source_ids if s}))
    return LearningUpdate(
        outcome_id=outcome_id,
        ticker=ticker,
        result=classify_outcome(pnl_percent),
        source_ids=unique_sources,
        padding_factor=padding_factor(pnl_percent, config),
    )


class LearningLoop:
    """Consumes trade outcomes and feeds them into a ``LearningStore``."""

    def __init__(self, store: "LearningStore", config: LearningConfig = DEFAULT_LEARNING_CONFIG):
        self.store = store
        self.config = config

    async def submit_outcome(self, outcome: TradeOutcome) -> tuple[int, bool]:
        """Durably queue an outcome. Returns (outcome_id, created)."""
        return await self.store.record_outcome(outcome)

    async def process_trade_outcome(self, outcome_id: int) -> LearningUpdate | None:
        """Apply one queued outcome; None if it was already consumed or is unknown."""
        update = await self.store.apply_outcome(outcome_id, self.config)
        if update is None:
            logger.info(f"Outcome {outcome_id} already processed or missing; skipped")
            return None

        logger.info(
            f"Learned from {update.ticker} outcome {outcome_id}: {update.result.value}",
            extra={
                "outcome_id": outcome_id,
                "sources": list(update.source_ids),
                "param_changes": update.param_changes,
            },
        )
        return update

    async def process_pending(self, limit: int = 200) -> int:
        """Drain up to ``limit`` unprocessed outcomes. Returns how many were applied."""
        applied = 0
        for outcome_id in await self.store.pending_outcome_ids(limit):
            if await self.process_trade_outcome(outcome_id) is not None:
                applied += 1
        return applied

    async def observe(self, outcome: TradeOutcome) -> LearningUpdate | None:
        """Queue and immediately apply an outcome."""
        outcome_id, _ = await self.submit_outcome(outcome)
        return await self.process_trade_outcome(outcome_id)


async def process_trade_outcome(
    store: "LearningStore",
    ticker: str,
    pnl_percent: float,
    contributing_source_ids: Iterable[str],
    *,
    closed_at: datetime | None = None,
    outcome_key: str | None = None,
    config: LearningConfig = DEFAULT_LEARNING_CONFIG,
) -> LearningUpdate | None:
    """
    Record and learn from one closed trade.

    Args:
        store: Weight/adaptation store
        ticker: Symbol that was traded
        pnl_percent: Realized return; > 0 is a win
        contributing_source_ids: Sources whose signals backed the trade
        closed_at: Close time (now when omitted)
        outcome_key: Dedupe key; a repeated key is consumed only once

    Returns:
        The applied update, or None when the outcome had already been consumed
    """
    outcome = TradeOutcome(
        ticker=ticker,
        pnl_percent=pnl_percent,
        contributing_source_ids=list(contributing_source_ids),
        closed_at=closed_at or datetime.now(UTC),
        **({"outcome_key": outcome_key} if outcome_key else {}),
    )
    return await LearningLoop(store, config).observe(outcome)
