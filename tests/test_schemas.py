"""Tests for API request schemas."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from conviction.engine.schemas import SignalGroup, TradeDirection, TradeOutcome
from conviction.schemas.evaluation import EvaluationRequest


class TestEvaluationRequest:
    def test_bare_values_wrapped(self):
        request = EvaluationRequest(ticker=" nvda ", price=10, signals={"fsi": 61, "gmf": "RISK_ON"})
        assert request.ticker == "NVDA"
        assert request.signals["fsi"].value == 61
        assert request.direction == TradeDirection.LONG

    def test_to_snapshot(self):
        as_of = datetime(2026, 3, 10, tzinfo=UTC)
        request = EvaluationRequest(
            ticker="nvda",
            price=10,
            as_of=as_of,
            signals={"custom": {"value": 70, "group": "technical", "timestamp": "2026-03-09T10:00:00Z"}},
        )
        snapshot = request.to_snapshot()

        assert snapshot.taken_at == as_of
        signal = snapshot.get("custom")
        assert signal.ticker == "NVDA"
        assert signal.group == SignalGroup.TECHNICAL
        assert signal.timestamp.day == 9

    @pytest.mark.parametrize("base_score", [-1, 101])
    def test_base_score_bounds(self, base_score):
        with pytest.raises(ValidationError):
            EvaluationRequest(ticker="X", price=1, base_score=base_score)


class TestTradeOutcome:
    def test_ticker_normalised(self):
        outcome = TradeOutcome(ticker=" nvda ", pnl_percent=1.0)
        assert outcome.ticker == "NVDA"

    @pytest.mark.parametrize("ticker", ["", "   ", "X" * 21])
    def test_ticker_must_fit_column(self, ticker):
        with pytest.raises(ValidationError):
            TradeOutcome(ticker=ticker, pnl_percent=1.0)
