"""Tests for the ORM repositories and the database-backed learning store (SQLite)."""

from __future__ import annotations

import asyncio
import warnings
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from conviction.core.exceptions import PersistenceUnavailableError
from conviction.engine.config import DEFAULT_LEARNING_CONFIG, STOP_LOSS_PADDING
from conviction.engine.learning import LearningLoop
from conviction.engine.schemas import TradeOutcome
from conviction.engine.state import StateProvider
from conviction.engine.stores import DatabaseLearningStore
from conviction.repositories import (
    engine_weights_orm,
    system_adaptations_orm,
    trade_outcomes_orm,
)


NOW = datetime(2026, 3, 10, 16, 0, tzinfo=UTC)


async def submit(session, key: str, pnl: float, sources=("fsi",), **kwargs):
    return await trade_outcomes_orm.submit_outcome(
        session,
        outcome_key=key,
        ticker="aapl",
        pnl_percent=pnl,
        contributing_source_ids=list(sources),
        closed_at=kwargs.pop("closed_at", NOW),
        **kwargs,
    )


class TestEngineWeightsRepository:
    @pytest.mark.asyncio
    async def test_first_nudge_starts_from_default(self, db_session):
        await engine_weights_orm.nudge_weight(db_session, "fsi", win=True)
        await db_session.commit()

        row = await engine_weights_orm.get_weight(db_session, "fsi")
        assert row.weight == pytest.approx(1.05)
        assert (row.wins, row.losses) == (1, 0)

    @pytest.mark.asyncio
    async def test_nudges_compound_and_clamp(self, db_session):
        for _ in range(20):
            await engine_weights_orm.nudge_weight(db_session, "uoa", win=True)
        for _ in range(3):
            await engine_weights_orm.nudge_weight(db_session, "gmf", win=False)
        await db_session.commit()

        weights = {w.source_id: w for w in await engine_weights_orm.list_weights(db_session)}
        assert list(weights) == ["gmf", "uoa"]
        assert weights["uoa"].weight == pytest.approx(2.0)
        assert weights["uoa"].wins == 20
        assert weights["gmf"].weight == pytest.approx(0.95**3)
        assert weights["gmf"].losses == 3

    @pytest.mark.asyncio
    async def test_missing_weight_is_none(self, db_session):
        assert await engine_weights_orm.get_weight(db_session, "nope") is None


class TestSystemAdaptationsRepository:
    @pytest.mark.asyncio
    async def test_seed_defaults_idempotent(self, db_session):
        await system_adaptations_orm.seed_defaults(db_session)
        await system_adaptations_orm.seed_defaults(db_session)
        await db_session.commit()

        params = {p.param_key: p.value for p in await system_adaptations_orm.list_adaptations(db_session)}
        assert params == {
            "conviction_threshold": 70.0,
            "max_allocation_cap": 15.0,
            "stop_loss_padding": 1.0,
        }

    @pytest.mark.asyncio
    async def test_adapt_param_clamps(self, db_session):
        await system_adaptations_orm.seed_defaults(db_session)
        for _ in range(30):
            await system_adaptations_orm.adapt_param(db_session, STOP_LOSS_PADDING, 1.02, 0.8, 1.5)
        await db_session.commit()

        param = await system_adaptations_orm.get_adaptation(db_session, STOP_LOSS_PADDING)
        assert param.value == pytest.approx(1.5)

    @pytest.mark.asyncio
    async def test_adapt_param_creates_missing_row(self, db_session):
        await system_adaptations_orm.adapt_param(db_session, STOP_LOSS_PADDING, 0.99, 0.8, 1.5)
        await db_session.commit()

        param = await system_adaptations_orm.get_adaptation(db_session, STOP_LOSS_PADDING)
        assert param.value == pytest.approx(0.99)


class TestTradeOutcomesRepository:
    @pytest.mark.asyncio
    async def test_submit_dedupes_by_key(self, db_session):
        first_id, created = await submit(db_session, "close-1", 2.0)
        again_id, created_again = await submit(db_session, "close-1", 2.0)
        await db_session.commit()

        assert created and not created_again
        assert first_id == again_id
        assert await trade_outcomes_orm.pending_outcome_ids(db_session) == [first_id]

    @pytest.mark.asyncio
    async def test_claim_once(self, db_session):
        outcome_id, _ = await submit(db_session, "close-1", 2.0)

        assert await trade_outcomes_orm.claim_outcome(db_session, outcome_id) is True
        assert await trade_outcomes_orm.claim_outcome(db_session, outcome_id) is False
        await db_session.commit()

        record = await trade_outcomes_orm.get_outcome(db_session, outcome_id)
        assert record.processed_at is not None
        assert record.ticker == "AAPL"
        assert await trade_outcomes_orm.pending_outcome_ids(db_session) == []

    @pytest.mark.asyncio
    async def test_aggregates_only_processed(self, db_session):
        for i, pnl in enumerate((4.0, -2.0, 1.0)):
            outcome_id, _ = await submit(
                db_session, f"k{i}", pnl, sector="Energy", predicted_confidence=70
            )
            await trade_outcomes_orm.claim_outcome(db_session, outcome_id)
        await submit(db_session, "pending", 9.0, sector="Energy", predicted_confidence=90)
        await submit(db_session, "old", 9.0, sector="Energy", closed_at=NOW - timedelta(days=400))
        await db_session.commit()

        sectors = await trade_outcomes_orm.sector_performance(
            db_session, since=NOW - timedelta(days=180)
        )
        assert sectors["Energy"] == (2, 3, pytest.approx(1.0))

        samples = await trade_outcomes_orm.calibration_samples(db_session, limit=10)
        assert sorted(samples) == [(70, False), (70, True), (70, True)]


class TestDatabaseLearningStore:
    """End-to-end learning against SQLite."""

    @pytest.mark.asyncio
    async def test_outcome_applied_exactly_once(self, db_engine):
        store = DatabaseLearningStore(retry_delay=0)
        await store.ensure_defaults()
        loop = LearningLoop(store)

        outcome = TradeOutcome(
            ticker="AAPL",
            pnl_percent=-6.0,
            contributing_source_ids=["fsi", "uoa"],
            sector="Technology",
            predicted_confidence=82,
            outcome_key="close-42",
        )
        outcome_id, created = await loop.submit_outcome(outcome)
        assert created
        assert await loop.submit_outcome(outcome) == (outcome_id, False)

        update = await loop.process_trade_outcome(outcome_id)
        assert update.source_ids == ("fsi", "uoa")
        assert await loop.process_trade_outcome(outcome_id) is None

        state = await store.load_state()
        assert state.weights["fsi"].weight == pytest.approx(0.95)
        assert state.weights["uoa"].losses == 1
        assert state.stop_loss_padding == pytest.approx(1.02)
        assert state.conviction_threshold == 70.0
        assert state.sector_performance["Technology"].total == 1
        assert state.calibration_samples == ((82, False),)

    @pytest.mark.asyncio
    async def test_sweep_processes_pending(self, db_engine):
        store = DatabaseLearningStore(retry_delay=0)
        loop = LearningLoop(store)
        for i in range(4):
            await loop.submit_outcome(
                TradeOutcome(ticker="MSFT", pnl_percent=1.0, contributing_source_ids=["gmf"])
            )
        assert await loop.process_pending() == 4
        weights = await store.list_weights()
        assert weights[0].source_id == "gmf"
        assert weights[0].weight == pytest.approx(1.05**4)
        assert weights[0].win_rate == 1.0

    @pytest.mark.asyncio
    async def test_empty_store_uses_default_params(self, db_engine):
        store = DatabaseLearningStore(retry_delay=0)
        state = await store.load_state()
        assert state.stop_loss_padding == 1.0
        assert state.max_allocation_cap == 15.0
        assert not state.is_fallback

    @pytest.mark.asyncio
    async def test_transient_errors_surface_as_unavailable(self):
        store = DatabaseLearningStore(retry_attempts=2, retry_delay=0, retry_max_delay=0)
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        with pytest.raises(PersistenceUnavailableError):
            await store._with_retry(flaky, "load_state")
        assert calls == 2

    @pytest.mark.asyncio
    async def test_transient_error_recovers(self):
        store = DatabaseLearningStore(retry_attempts=3, retry_delay=0, retry_max_delay=0)
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 2:
                raise ConnectionError("reset")
            return "ok"

        assert await store._with_retry(flaky, "load_state") == "ok"
        assert calls == 2

    @pytest.mark.asyncio
    async def test_programming_errors_not_retried(self):
        store = DatabaseLearningStore(retry_attempts=3, retry_delay=0)

        async def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await store._with_retry(broken, "load_state")

    @pytest.mark.asyncio
    async def test_concurrent_outcomes_compose(self, db_engine):
        # SQLite serialises writers; a blocked writer surfaces as a retryable lock error
        store = DatabaseLearningStore(retry_attempts=10, retry_delay=0.05, retry_max_delay=0.2)
        loop = LearningLoop(store)
        pnls = [2.0, 3.5, -1.0, 4.0, -2.5, 1.5]
        outcome_ids = [
            (
                await loop.submit_outcome(
                    TradeOutcome(ticker="NVDA", pnl_percent=pnl, contributing_source_ids=["fsi"])
                )
            )[0]
            for pnl in pnls
        ]

        updates = await asyncio.gather(*(store.apply_outcome(i) for i in outcome_ids))

        assert all(update is not None for update in updates)
        weights = {w.source_id: w for w in await store.list_weights()}
        assert (weights["fsi"].wins, weights["fsi"].losses) == (4, 2)
        assert weights["fsi"].weight == pytest.approx(1.05**4 * 0.95**2)
        assert await store.pending_outcome_ids() == []

    @pytest.mark.asyncio
    async def test_state_load_uses_read_budget(self):
        store = DatabaseLearningStore(
            retry_attempts=3, retry_delay=0, retry_max_delay=0, read_attempts=1
        )
        down = MagicMock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))

        with patch("conviction.engine.stores.get_session", down):
            with pytest.raises(PersistenceUnavailableError):
                await store.load_state()
            assert down.call_count == 1

            provider = StateProvider(store, ttl=60, failure_backoff=30)
            for _ in range(3):
                assert (await provider.get_state()).is_fallback
            assert down.call_count == 2

    @pytest.mark.asyncio
    async def test_backoff_configuration_is_current(self):
        store = DatabaseLearningStore(retry_attempts=2, retry_delay=0.01, retry_max_delay=0.02)
        calls = 0

        async def flaky():
            nonlocal calls
            calls += 1
            if calls < 2:
                raise ConnectionError("reset")
            return "ok"

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            assert await store._with_retry(flaky, "record_outcome") == "ok"

    def test_default_config(self):
        assert DatabaseLearningStore().config == DEFAULT_LEARNING_CONFIG
