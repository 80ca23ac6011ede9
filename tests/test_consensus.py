"""Tests for the consensus engine."""

from __future__ import annotations

import math

import pytest

from conviction.engine.config import ConsensusConfig
from conviction.engine.consensus import (
    aggregate_groups,
    compute_consensus,
    confidence_tier,
    consensus_from_snapshot,
    normalize_value,
    resolve_regime,
)
from conviction.engine.schemas import ConfidenceTier, MacroRegime, Signal, SignalGroup


ALL_NEUTRAL = {group: 50 for group in SignalGroup}


class TestNormalizeValue:
    """Raw signal values onto the 0-100 scale."""

    def test_numbers_are_clamped(self):
        assert normalize_value(150) == 100.0
        assert normalize_value(-5) == 0.0
        assert normalize_value(72.5) == 72.5

    def test_labels_are_looked_up(self):
        assert normalize_value("bullish") == 75.0
        assert normalize_value("Strong Bearish") == 10.0

    @pytest.mark.parametrize("value", [None, math.nan, math.inf, True, "gibberish", object()])
    def test_malformed_values_are_neutral(self, value):
        assert normalize_value(value) == 50.0


class TestRegimeAndTier:
    def test_resolve_regime_accepts_names(self):
        assert resolve_regime("risk_off") == MacroRegime.RISK_OFF
        assert resolve_regime("risk-on") == MacroRegime.RISK_ON
        assert resolve_regime("SIDEWAYS") is None
        assert resolve_regime(None) is None

    def test_tier_boundaries(self):
        assert confidence_tier(80) == ConfidenceTier.HIGH
        assert confidence_tier(79) == ConfidenceTier.MEDIUM
        assert confidence_tier(60) == ConfidenceTier.MEDIUM
        assert confidence_tier(59) == ConfidenceTier.LOW

    def test_regime_weight_vectors_sum_to_one(self):
        for regime, weights in ConsensusConfig().regime_weights.items():
            assert sum(weights.values()) == pytest.approx(1.0), regime
            assert all(w > 0 for w in weights.values())


class TestComputeConsensus:
    """Tests for compute_consensus."""

    def test_all_neutral_scores_fifty(self):
        result = compute_consensus("aapl", ALL_NEUTRAL, "RISK_ON")
        assert result.ticker == "AAPL"
        assert result.final_score == 50
        assert result.confidence_tier == ConfidenceTier.LOW
        assert result.signal_count == 5

    def test_regime_weights_applied(self):
        values = dict(ALL_NEUTRAL, technical=100)
        result = compute_consensus("AAPL", values, MacroRegime.RISK_ON)
        # technical carries 0.30 in RISK_ON
        assert result.final_score == 65
        assert result.breakdown["technical"] == 100.0

    def test_empty_input_is_neutral_low(self):
        result = compute_consensus("AAPL", {}, "RISK_ON")
        assert result.final_score == 50
        assert result.confidence_tier == ConfidenceTier.LOW
        assert result.signal_count == 0
        assert "No signals available" in result.details

    def test_missing_groups_use_neutral_with_detail(self):
        result = compute_consensus("AAPL", {"technical": 90}, "RISK_ON")
        assert result.breakdown["valuation"] == 50.0
        assert any("valuation signal missing" in d for d in result.details)

    def test_unknown_regime_defaults_to_risk_on(self):
        result = compute_consensus("AAPL", ALL_NEUTRAL, "SIDEWAYS")
        assert result.regime == MacroRegime.RISK_ON
        assert any("SIDEWAYS" in d for d in result.details)

    def test_stress_penalty_above_threshold(self):
        values = dict(ALL_NEUTRAL, technical=100)
        calm = compute_consensus("AAPL", values, "RISK_ON", volatility_proxy=20)
        stressed = compute_consensus("AAPL", values, "RISK_ON", volatility_proxy=30)
        assert calm.regime_adjustment == 0.0
        assert stressed.regime_adjustment == -15.0
        assert stressed.final_score == calm.final_score - 15

    def test_stress_penalty_never_goes_below_zero(self):
        values = {group: 0 for group in SignalGroup}
        result = compute_consensus("AAPL", values, "RISK_OFF", volatility_proxy=80)
        assert result.final_score == 0

    def test_sector_alignment_bonus(self):
        plain = compute_consensus("AAPL", ALL_NEUTRAL, "RISK_ON")
        aligned = compute_consensus("AAPL", ALL_NEUTRAL, "RISK_ON", sector="Technology")
        misaligned = compute_consensus("AAPL", ALL_NEUTRAL, "RISK_OFF", sector="Technology")
        assert aligned.breakdown["macro"] == 60.0
        assert aligned.final_score > plain.final_score
        assert misaligned.breakdown["macro"] == 50.0

    @pytest.mark.parametrize("regime", list(MacroRegime))
    @pytest.mark.parametrize("group", list(SignalGroup))
    def test_monotonic_in_every_group(self, regime, group):
        previous = -1
        for value in range(0, 101, 10):
            score = compute_consensus("X", dict(ALL_NEUTRAL, **{group.value: value}), regime).final_score
            assert score >= previous
            previous = score

    def test_unknown_group_keys_ignored(self):
        result = compute_consensus("AAPL", {"astrology": 99, "technical": 50}, "RISK_ON")
        assert "astrology" not in result.breakdown
        assert result.signal_count == 1


class TestAggregation:
    def test_weighted_mean_within_group(self):
        signals = [
            Signal(source_id="technical", ticker="AAPL", value=80),
            Signal(source_id="mbe", ticker="AAPL", value=20),
        ]
        groups = aggregate_groups(signals, weights={"mbe": 3.0})
        assert groups[SignalGroup.TECHNICAL] == pytest.approx(35.0)

    def test_auxiliary_sources_ignored(self):
        signals = [Signal(source_id="atr_pct", ticker="AAPL", value=3.2)]
        assert aggregate_groups(signals) == {}

    def test_explicit_group_tag_wins(self):
        signals = [Signal(source_id="custom", ticker="AAPL", value=90, group=SignalGroup.INSIDER)]
        assert aggregate_groups(signals) == {SignalGroup.INSIDER: 90.0}

    def test_snapshot_consensus_uses_volatility_proxy(self, make_snapshot):
        snapshot = make_snapshot(technical=70, sentiment="BULLISH")
        result = consensus_from_snapshot(snapshot, "RISK_ON", volatility_proxy=40)
        assert result.regime_adjustment == -15.0
        assert result.signal_count == 2
