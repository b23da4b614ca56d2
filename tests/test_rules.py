"""
Rule engine tests.
Tests for matrix rule evaluation.
"""

import logging

import pytest

from matrix_engine.database.models import Holding
from matrix_engine.indicators.signals import SignalBundle
from matrix_engine.rules.catalog import (
    RuleCatalog,
    default_catalog,
    parse_threshold,
    rule_from_dict,
)
from matrix_engine.rules.engine import EvaluationPass, RuleEngine
from matrix_engine.rules.types import ActionType


def _holding(classification="Compounder", rating=2, region="USD", symbol="AAPL"):
    return Holding(
        symbol=symbol, region=region, classification=classification, rating=rating
    )


def _ids(triggered):
    return [t.rule.rule_id for t in triggered]


@pytest.fixture
def engine():
    return RuleEngine(default_catalog())


class TestHoldingValidation:
    """Test classification and rating checks."""

    def test_abbreviated_classification(self, engine: RuleEngine):
        assert engine.is_evaluable(_holding(classification="Comp", rating="2"))

    @pytest.mark.parametrize(
        "classification,rating",
        [(None, 2), ("Growth", 2), ("Compounder", None), ("Compounder", 5), ("Compounder", 0)],
    )
    def test_invalid_holding_skipped(self, engine: RuleEngine, caplog, classification, rating):
        """Should skip the holding and log a warning."""
        holding = _holding(classification=classification, rating=rating)
        with caplog.at_level(logging.WARNING):
            result = engine.evaluate(holding, SignalBundle(rsi14=10.0))
        assert result == []
        assert not engine.is_evaluable(holding)
        assert "Skipping AAPL" in caplog.text


class TestPositionRules:
    """Test position increase and decrease rules."""

    def test_rsi_low_compounder_2(self, engine: RuleEngine):
        """Should trigger exactly one PositionIncrease for RSI 38."""
        result = engine.evaluate(_holding(), SignalBundle(rsi14=38.0))

        assert len(result) == 1
        triggered = result[0]
        assert triggered.rule.rule_id == "rsi-low"
        assert triggered.rule.action_type is ActionType.POSITION_INCREASE
        assert triggered.actual_value == 38.0
        assert triggered.threshold_value.value == 40.0

    def test_deterministic(self, engine: RuleEngine):
        signals = SignalBundle(rsi14=38.0, pct_from_52wk_high=-22.0, position_weight=9.0)
        assert engine.evaluate(_holding(), signals) == engine.evaluate(_holding(), signals)

    def test_not_applicable_never_compared(self, engine: RuleEngine):
        """Should not treat an N/A cell as zero."""
        # rsi-low is N/A for Compounder/4; RSI 0 would be "below" any number
        assert engine.evaluate(_holding(rating=4), SignalBundle(rsi14=0.0)) == []

    def test_missing_signal_skipped(self, engine: RuleEngine):
        assert engine.evaluate(_holding(), SignalBundle()) == []

    def test_percent_below_is_magnitude(self, engine: RuleEngine):
        """Should compare a '10%' below cell against -10%."""
        holding = _holding(rating=1)
        assert _ids(engine.evaluate(holding, SignalBundle(pct_from_52wk_high=-12.0))) == [
            "price-52wk"
        ]
        assert engine.evaluate(holding, SignalBundle(pct_from_52wk_high=-8.0)) == []
        assert engine.evaluate(holding, SignalBundle(pct_from_52wk_high=12.0)) == []

    def test_negative_percent_cell(self, engine: RuleEngine):
        """Should treat '- 5%' and '-10%' cells the same way as unsigned ones."""
        holding = _holding(classification="Catalyst", rating=1)
        assert _ids(engine.evaluate(holding, SignalBundle(pct_from_200ma=-6.0))) == [
            "under-200ma"
        ]
        holding = _holding(rating=1)
        assert _ids(engine.evaluate(holding, SignalBundle(sector_perf_diff=-11.0))) == [
            "sector-perf-neg"
        ]

    @pytest.mark.parametrize("value,fires", [(1.9, True), (-2.4, True), (2.5, True), (3.0, False)])
    def test_at_symmetric_band(self, engine: RuleEngine, value, fires):
        """Should treat '+/- 2.5%' as a band around zero."""
        result = engine.evaluate(_holding(rating=1), SignalBundle(pct_from_200ma=value))
        assert ("at-200ma" in _ids(result)) is fires

    def test_macd_delta(self, engine: RuleEngine):
        """Should fire on the sign of the histogram slope."""
        assert _ids(
            engine.evaluate(_holding(rating=1), SignalBundle(macd_histogram_delta=0.3))
        ) == ["macd-below"]
        # macd-above is N/A for Compounder/1
        assert engine.evaluate(_holding(rating=1), SignalBundle(macd_histogram_delta=-0.3)) == []
        assert _ids(
            engine.evaluate(_holding(rating=2), SignalBundle(macd_histogram_delta=-0.3))
        ) == ["macd-above"]
        assert engine.evaluate(_holding(rating=2), SignalBundle(macd_histogram_delta=0.0)) == []

    def test_golden_cross(self, engine: RuleEngine):
        assert _ids(engine.evaluate(_holding(rating=1), SignalBundle(ma_cross=1))) == [
            "golden-cross-pos"
        ]
        assert engine.evaluate(_holding(rating=1), SignalBundle(ma_cross=0)) == []

    def test_max_weight_by_region(self, engine: RuleEngine):
        """Should apply the regional max weight rule only to its portfolios."""
        signals = SignalBundle(position_weight=8.5)
        assert _ids(engine.evaluate(_holding(rating=1), signals)) == ["max-weight"]
        assert engine.evaluate(_holding(rating=1, region="INTL"), signals) == []
        assert _ids(
            engine.evaluate(_holding(rating=1, region="INTL"), SignalBundle(position_weight=10.5))
        ) == ["max-weight-intl"]

    def test_triggered_rule_carries_region(self, engine: RuleEngine):
        signals = SignalBundle(position_weight=9.0)
        triggered = engine.evaluate(_holding(rating=1, region="CAD"), signals)
        assert [t.region for t in triggered] == ["CAD"]

    def test_sorted_by_group_and_order(self, engine: RuleEngine):
        """Should order increases before decreases, then by order number."""
        signals = SignalBundle(rsi14=38.0, pct_from_52wk_high=-20.0, position_weight=9.0)
        assert _ids(engine.evaluate(_holding(), signals)) == [
            "price-52wk",
            "rsi-low",
            "max-weight",
        ]


class TestRatingRules:
    """Test rating increase and decrease rules."""

    def test_rating_pass(self, engine: RuleEngine):
        signals = SignalBundle(
            rsi14=38.0, earnings_quality_points=6.0, earnings_surprise_streak=-5.0
        )
        result = engine.evaluate(_holding(), signals, EvaluationPass.RATING)
        assert _ids(result) == ["earnings-quality", "negative-quarters"]

    def test_position_pass_ignores_rating_rules(self, engine: RuleEngine):
        signals = SignalBundle(earnings_quality_points=6.0)
        assert engine.evaluate(_holding(), signals, EvaluationPass.POSITION) == []

    def test_deterioration_streak(self, engine: RuleEngine):
        signals = SignalBundle(roic_down_streak=3.0, net_debt_up_streak=1.0)
        result = engine.evaluate(_holding(), signals, EvaluationPass.RATING)
        assert _ids(result) == ["roic-decrease"]

    def test_evaluate_all(self, engine: RuleEngine):
        """Should run the position pass before the rating pass."""
        signals = SignalBundle(rsi14=38.0, earnings_quality_points=6.0)
        assert _ids(engine.evaluate_all(_holding(), signals)) == [
            "rsi-low",
            "earnings-quality",
        ]


class TestThresholdChecks:
    """Test malformed cells and custom tolerances."""

    def _catalog(self, *rules):
        return RuleCatalog(rule_from_dict(r) for r in rules)

    def _rule(self, rule_id, order_number, cell, method="value", logic="below", signal="rsi14"):
        return {
            "rule_id": rule_id,
            "action_type": "PositionIncrease",
            "evaluation_method": method,
            "evaluation_logic": logic,
            "signal": signal,
            "order_number": order_number,
            "thresholds": {"Compounder": {2: cell}},
        }

    def test_malformed_cell_skipped(self, caplog):
        """Should log and skip a malformed cell without affecting other rules."""
        engine = RuleEngine(
            self._catalog(self._rule("broken", 1, "forty"), self._rule("rsi-low", 2, "40"))
        )
        with caplog.at_level(logging.WARNING):
            result = engine.evaluate(_holding(), SignalBundle(rsi14=38.0))
        assert _ids(result) == ["rsi-low"]
        assert "broken" in caplog.text

    def test_cell_kind_must_match_method(self):
        """Should skip a percent cell on a value rule."""
        engine = RuleEngine(self._catalog(self._rule("mixed", 1, "40%")))
        assert engine.evaluate(_holding(), SignalBundle(rsi14=10.0)) == []

    def test_at_with_level_uses_tolerance(self):
        engine = RuleEngine(
            self._catalog(self._rule("near", 1, "50", logic="at")), at_tolerance=2.5
        )
        assert _ids(engine.evaluate(_holding(), SignalBundle(rsi14=51.0))) == ["near"]
        assert engine.evaluate(_holding(), SignalBundle(rsi14=53.0)) == []

    def test_contradictory_delta_cell(self, engine: RuleEngine):
        rule = default_catalog().get("macd-below")
        with pytest.raises(ValueError):
            engine.check(rule, parse_threshold("Δ NEGATIVE"), 1.0)
