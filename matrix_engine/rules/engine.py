"""
Rule evaluation engine.
"""

import logging
from typing import Optional

from matrix_engine.database.models import Holding
from matrix_engine.indicators.signals import SignalBundle
from .catalog import RuleCatalog
from .types import (
    Alert,
    AlertSeverity,
    EvaluationLogic,
    EvaluationMethod,
    EvaluationPass,
    MatrixRule,
    StockClassification,
    ThresholdKind,
    ThresholdValue,
    TriggeredRule,
    parse_rating,
)

logger = logging.getLogger(__name__)

# Re-export for convenience
__all__ = ["RuleEngine", "Alert", "AlertSeverity", "EvaluationPass"]

DEFAULT_AT_TOLERANCE = 2.5

_EXPECTED_KINDS = {
    EvaluationMethod.PERCENT: {ThresholdKind.PERCENT},
    EvaluationMethod.VALUE: {ThresholdKind.LEVEL},
    EvaluationMethod.DELTA: {ThresholdKind.DELTA},
}


class RuleEngine:
    """Evaluates matrix rules against a holding's signals."""

    def __init__(self, catalog: RuleCatalog, at_tolerance: float = DEFAULT_AT_TOLERANCE):
        """
        Initialize the engine.

        Args:
            catalog: Rule catalog, read-only for the engine's lifetime
            at_tolerance: Band width used by 'at' rules whose cell is not a
                symmetric percentage
        """
        self.catalog = catalog
        self.at_tolerance = at_tolerance

    def classify(
        self, holding: Holding
    ) -> Optional[tuple[StockClassification, int]]:
        """Classification and rating of a holding, or None if either is invalid."""
        classification = StockClassification.parse(holding.classification)
        rating = parse_rating(holding.rating)
        if classification is None or rating is None:
            return None
        return classification, rating

    def is_evaluable(self, holding: Holding) -> bool:
        return self.classify(holding) is not None

    def evaluate(
        self,
        holding: Holding,
        signals: SignalBundle,
        evaluation_pass: EvaluationPass = EvaluationPass.POSITION,
    ) -> list[TriggeredRule]:
        """
        Evaluate the rules of one pass for a holding.

        Args:
            holding: Holding with classification and rating
            signals: Latest signal values for the holding
            evaluation_pass: Position or rating rules

        Returns:
            Triggered rules ordered by action group and order number
        """
        classified = self.classify(holding)
        if classified is None:
            logger.warning(
                f"Skipping {holding.symbol}: invalid classification "
                f"{holding.classification!r} or rating {holding.rating!r}"
            )
            return []
        classification, rating = classified

        triggered = []
        for rule in self.catalog.rules_for(evaluation_pass.action_types):
            if not rule.applies_to_region(holding.region):
                continue

            threshold = self.catalog.resolve_threshold(rule, classification, rating)
            if not threshold.is_applicable:
                continue

            actual = getattr(signals, rule.signal, None)
            if actual is None:
                continue

            try:
                fired = self.check(rule, threshold, actual)
            except ValueError as e:
                logger.warning(f"Skipping rule {rule.rule_id} for {holding.symbol}: {e}")
                continue

            if fired:
                triggered.append(
                    TriggeredRule(
                        symbol=holding.symbol,
                        rule=rule,
                        actual_value=float(actual),
                        threshold_value=threshold,
                        region=holding.region,
                    )
                )

        triggered.sort(key=lambda t: t.rule.sort_key)
        return triggered

    def evaluate_all(
        self, holding: Holding, signals: SignalBundle
    ) -> list[TriggeredRule]:
        """Run the position pass then the rating pass."""
        return self.evaluate(holding, signals, EvaluationPass.POSITION) + self.evaluate(
            holding, signals, EvaluationPass.RATING
        )

    def check(self, rule: MatrixRule, threshold: ThresholdValue, actual: float) -> bool:
        """
        Compare an actual value against a threshold cell.

        Percentage cells are magnitudes: 'below' compares against -|x| and
        'above' against +|x|.

        Raises:
            ValueError: If the cell is malformed or does not fit the rule
        """
        if threshold.kind is ThresholdKind.MALFORMED:
            raise ValueError(f"malformed threshold {threshold.raw!r}")
        if threshold.kind not in _EXPECTED_KINDS[rule.evaluation_method]:
            raise ValueError(
                f"{threshold.kind.value} threshold {threshold.raw!r} "
                f"for {rule.evaluation_method.value} rule"
            )

        logic = rule.evaluation_logic

        if rule.evaluation_method is EvaluationMethod.DELTA:
            if logic not in (EvaluationLogic.POSITIVE, EvaluationLogic.NEGATIVE):
                raise ValueError(f"delta rule with '{logic.value}' logic")
            expected = 1 if logic is EvaluationLogic.POSITIVE else -1
            if threshold.sign != expected:
                raise ValueError(f"threshold {threshold.raw!r} contradicts '{logic.value}'")
            return actual > 0 if expected > 0 else actual < 0

        value = threshold.value
        if logic is EvaluationLogic.AT:
            if threshold.symmetric:
                return abs(actual) <= abs(value)
            return abs(actual - value) <= self.at_tolerance

        if rule.evaluation_method is EvaluationMethod.PERCENT:
            value = -abs(value) if logic is EvaluationLogic.BELOW else abs(value)

        if logic is EvaluationLogic.ABOVE:
            return actual > value
        if logic is EvaluationLogic.BELOW:
            return actual < value
        raise ValueError(f"'{logic.value}' logic on a {rule.evaluation_method.value} rule")
