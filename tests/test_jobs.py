"""Tests for learning-loop jobs and the Celery wiring."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

import conviction.jobs.definitions  # noqa: F401 - register jobs
from conviction.core.exceptions import JobError, PersistenceUnavailableError
from conviction.engine.schemas import TradeOutcome
from conviction.engine.stores import set_learning_store
from conviction.jobs import execute_job, get_job, list_job_names, register_job
from conviction.jobs.dispatch import enqueue_outcome


class TestRegistry:
    def test_learning_jobs_registered(self):
        assert {"learning_process_outcome", "learning_sweep_outcomes"} <= set(list_job_names())

    def test_register_job(self):
        @register_job("test_noop")
        def noop():
            return "done"

        assert get_job("test_noop") is noop


class TestExecuteJob:
    @pytest.mark.asyncio
    async def test_unknown_job(self):
        with pytest.raises(JobError) as exc_info:
            await execute_job("does_not_exist")
        assert exc_info.value.error_code == "UNKNOWN_JOB"

    @pytest.mark.asyncio
    async def test_unexpected_errors_wrapped(self):
        @register_job("test_explodes")
        async def explodes():
            raise ValueError("boom")

        with pytest.raises(JobError) as exc_info:
            await execute_job("test_explodes")
        assert exc_info.value.details["job_name"] == "test_explodes"

    @pytest.mark.asyncio
    async def test_app_errors_propagate_for_retry(self):
        @register_job("test_store_down")
        async def store_down():
            raise PersistenceUnavailableError()

        with pytest.raises(PersistenceUnavailableError):
            await execute_job("test_store_down")

    @pytest.mark.asyncio
    async def test_process_outcome_job(self, memory_store):
        set_learning_store(memory_store)
        outcome_id, _ = await memory_store.record_outcome(
            TradeOutcome(ticker="AAPL", pnl_percent=2.0, contributing_source_ids=["fsi", "gmf"])
        )

        message = await execute_job("learning_process_outcome", outcome_id)
        assert "nudged 2 sources" in message

        again = await execute_job("learning_process_outcome", outcome_id)
        assert "already processed" in again

    @pytest.mark.asyncio
    async def test_sweep_job(self, memory_store):
        set_learning_store(memory_store)
        for pnl in (1.0, -7.0):
            await memory_store.record_outcome(TradeOutcome(ticker="AAPL", pnl_percent=pnl))

        assert await execute_job("learning_sweep_outcomes") == "Applied 2 pending outcomes"
        assert await memory_store.pending_outcome_ids() == []


class TestDispatch:
    def test_enqueue_returns_task_id(self):
        with patch("conviction.jobs.dispatch.celery_app") as app:
            app.send_task.return_value = MagicMock(id="abc")
            assert enqueue_outcome(5) == "abc"
            app.send_task.assert_called_once_with("learning.process_outcome", args=[5])

    def test_enqueue_broker_down(self):
        with patch("conviction.jobs.dispatch.celery_app") as app:
            app.send_task.side_effect = ConnectionError("redis unreachable")
            assert enqueue_outcome(5) is None


class TestCeleryWiring:
    def test_tasks_and_schedule(self):
        from conviction.celery_app import celery_app
        from conviction.jobs import tasks

        assert tasks.process_outcome_task.name == "learning.process_outcome"
        assert tasks.sweep_outcomes_task.name == "learning.sweep_outcomes"
        schedule = celery_app.conf.beat_schedule["learning-sweep-outcomes"]
        assert schedule["task"] == "learning.sweep_outcomes"
