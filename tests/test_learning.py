"""Tests for the outcome-driven learning loop."""

from __future__ import annotations

import asyncio
import math
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from conviction.engine.config import LearningConfig
from conviction.engine.learning import (
    LearningLoop,
    adapt_stop_loss_padding,
    classify_outcome,
    nudge_weight,
    padding_factor,
    plan_update,
    process_trade_outcome,
)
from conviction.engine.schemas import OutcomeResult, TradeOutcome
from conviction.engine.stores import InMemoryLearningStore


def outcome(pnl: float, sources=("fsi",), **kwargs) -> TradeOutcome:
    return TradeOutcome(ticker="AAPL", pnl_percent=pnl, contributing_source_ids=list(sources), **kwargs)


async def weight_of(store: InMemoryLearningStore, source_id: str) -> float:
    state = await store.load_state()
    return state.weights[source_id].weight


class TestPureRules:
    def test_classification(self):
        assert classify_outcome(0.01) == OutcomeResult.WIN
        assert classify_outcome(0) == OutcomeResult.LOSS
        assert classify_outcome(-3) == OutcomeResult.LOSS

    def test_nudge_clamped(self):
        assert nudge_weight(1.0, True) == pytest.approx(1.05)
        assert nudge_weight(1.0, False) == pytest.approx(0.95)
        assert nudge_weight(1.99, True) == 2.0
        assert nudge_weight(0.101, False) == 0.1

    def test_padding_rules(self):
        assert padding_factor(-6) == 1.02
        assert padding_factor(-5) is None
        assert padding_factor(0) is None
        assert padding_factor(4) == 0.99
        assert adapt_stop_loss_padding(1.49, -10) == 1.5
        assert adapt_stop_loss_padding(0.805, 3) == 0.8
        assert adapt_stop_loss_padding(1.1, -2) == 1.1

    def test_plan_update_dedupes_and_sorts(self):
        update = plan_update(7, "AAPL", 2.5, ["uoa", "fsi", "uoa", ""])
        assert update.source_ids == ("fsi", "uoa")
        assert update.win
        assert update.param_changes == {"stop_loss_padding": 0.99}

    def test_outcome_validation(self):
        with pytest.raises(ValidationError):
            outcome(math.nan)
        naive = outcome(1.0, closed_at=datetime(2026, 1, 5, 12, 0))
        assert naive.closed_at.tzinfo is not None
        assert outcome(1.0, sources=["fsi", "fsi", " "]).contributing_source_ids == ["fsi"]


class TestLearningLoop:
    """LearningLoop against the in-memory store."""

    @pytest.mark.asyncio
    async def test_five_wins_compound(self, memory_store):
        loop = LearningLoop(memory_store)
        for _ in range(5):
            await loop.observe(outcome(3.0))
        assert await weight_of(memory_store, "fsi") == pytest.approx(1.05**5)

    @pytest.mark.asyncio
    async def test_large_loss_widens_padding(self, memory_store):
        loop = LearningLoop(memory_store)
        update = await loop.observe(outcome(-6.0))
        state = await memory_store.load_state()
        assert update.result == OutcomeResult.LOSS
        assert state.stop_loss_padding == pytest.approx(1.02)
        assert state.weights["fsi"].weight == pytest.approx(0.95)

    @pytest.mark.asyncio
    async def test_padding_converges_to_ceiling(self, memory_store):
        loop = LearningLoop(memory_store)
        for _ in range(40):
            await loop.observe(outcome(-12.0))
        state = await memory_store.load_state()
        assert state.stop_loss_padding == 1.5

    @pytest.mark.asyncio
    async def test_weights_converge_to_bounds(self, memory_store):
        loop = LearningLoop(memory_store)
        for _ in range(60):
            await loop.observe(outcome(5.0, sources=("winner",)))
            await loop.observe(outcome(-1.0, sources=("loser",)))
        state = await memory_store.load_state()
        assert state.weights["winner"].weight == 2.0
        assert state.weights["loser"].weight == 0.1
        assert state.weights["winner"].wins == 60

    @pytest.mark.asyncio
    async def test_outcome_consumed_once(self, memory_store):
        loop = LearningLoop(memory_store)
        outcome_id, created = await loop.submit_outcome(outcome(2.0, outcome_key="close-1"))
        assert created

        assert await loop.process_trade_outcome(outcome_id) is not None
        assert await loop.process_trade_outcome(outcome_id) is None
        assert await weight_of(memory_store, "fsi") == pytest.approx(1.05)

    @pytest.mark.asyncio
    async def test_duplicate_key_not_requeued(self, memory_store):
        loop = LearningLoop(memory_store)
        first = await loop.submit_outcome(outcome(2.0, outcome_key="close-1"))
        second = await loop.submit_outcome(outcome(2.0, outcome_key="close-1"))
        assert second == (first[0], False)
        assert await memory_store.pending_outcome_ids() == [first[0]]

    @pytest.mark.asyncio
    async def test_unknown_outcome_is_noop(self, memory_store):
        assert await LearningLoop(memory_store).process_trade_outcome(999) is None

    @pytest.mark.asyncio
    async def test_process_pending_drains_queue(self, memory_store):
        loop = LearningLoop(memory_store)
        for pnl in (1.0, -2.0, 3.0):
            await loop.submit_outcome(outcome(pnl))
        assert await loop.process_pending() == 3
        assert await memory_store.pending_outcome_ids() == []
        assert await loop.process_pending() == 0

    @pytest.mark.asyncio
    async def test_concurrent_outcomes_lose_no_updates(self, memory_store):
        loop = LearningLoop(memory_store)
        ids = []
        for i in range(15):
            outcome_id, _ = await loop.submit_outcome(outcome(2.0 if i < 10 else -1.0))
            ids.append(outcome_id)

        # Every outcome dispatched twice at once
        results = await asyncio.gather(*(loop.process_trade_outcome(i) for i in ids + ids))

        assert sum(1 for r in results if r is not None) == 15
        state = await memory_store.load_state()
        assert state.weights["fsi"].weight == pytest.approx(1.05**10 * 0.95**5)
        assert state.weights["fsi"].samples == 15

    @pytest.mark.asyncio
    async def test_module_level_helper(self, memory_store):
        update = await process_trade_outcome(
            memory_store, "msft", 4.2, ["fsi", "uoa"], outcome_key="k-1"
        )
        assert update.ticker == "MSFT"
        assert update.source_ids == ("fsi", "uoa")
        again = await process_trade_outcome(memory_store, "msft", 4.2, ["fsi"], outcome_key="k-1")
        assert again is None

    @pytest.mark.asyncio
    async def test_custom_config(self):
        config = LearningConfig(win_multiplier=1.5, max_weight=3.0)
        store = InMemoryLearningStore(config=config)
        await LearningLoop(store, config).observe(outcome(1.0))
        assert await weight_of(store, "fsi") == pytest.approx(1.5)


class TestLearningAggregates:
    @pytest.mark.asyncio
    async def test_sector_and_calibration_history(self, memory_store):
        loop = LearningLoop(memory_store)
        now = datetime.now(UTC)
        for pnl in (3.0, 2.0, -1.0):
            await loop.observe(outcome(pnl, sector="Technology", predicted_confidence=75, closed_at=now))
        state = await memory_store.load_state()

        tech = state.sector_performance["Technology"]
        assert (tech.wins, tech.total) == (2, 3)
        assert tech.avg_pnl == pytest.approx(4 / 3)
        assert len(state.calibration_samples) == 3
        assert state.calibration_samples[0] == (75, False)
