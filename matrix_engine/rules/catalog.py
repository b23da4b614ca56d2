"""
Matrix rule catalog.

The default catalog carries the decision matrices for position changes
(increase/decrease) and rating changes (increase/decrease). Each rule holds
a threshold table keyed by stock classification and conviction rating.
"""

import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from matrix_engine.errors import CatalogError
from matrix_engine.indicators.signals import SignalBundle
from .types import (
    ACTION_ORDER,
    RATINGS,
    ActionType,
    EvaluationLogic,
    EvaluationMethod,
    MatrixRule,
    StockClassification,
    ThresholdMatrix,
    ThresholdValue,
)

logger = logging.getLogger(__name__)

NOT_APPLICABLE_MARKERS = {"", "-", "N/A", "#N/A", "NA"}

_PERCENT_RE = re.compile(r"^(?P<sym>\+/-|±)?\s*(?P<sign>[+-])?\s*(?P<num>\d+(?:\.\d+)?)\s*%$")
_NUMBER_RE = re.compile(r"^(?P<sign>[+-])?\s*(?P<num>\d+(?:\.\d+)?)$")
_DELTA_RE = re.compile(r"^(?:Δ|DELTA)\s*(?P<dir>POSITIVE|NEGATIVE)$", re.IGNORECASE)


def parse_threshold(raw: Any) -> ThresholdValue:
    """
    Parse one threshold cell.

    Accepted forms: "10%", "- 5%", "+/- 2.5%", "40", "-4", "Δ POSITIVE",
    "Δ NEGATIVE" and the N/A markers. Anything else yields a MALFORMED value.
    """
    if raw is None:
        return ThresholdValue.not_applicable()
    if isinstance(raw, bool):
        return ThresholdValue.malformed(str(raw))
    if isinstance(raw, (int, float)):
        return ThresholdValue.level(float(raw), raw=str(raw))

    text = str(raw).strip()
    if text.upper() in NOT_APPLICABLE_MARKERS:
        return ThresholdValue.not_applicable(raw=text or "N/A")

    match = _PERCENT_RE.match(text)
    if match:
        value = float(match.group("num"))
        if match.group("sign") == "-":
            value = -value
        return ThresholdValue.percent(value, symmetric=bool(match.group("sym")), raw=text)

    match = _NUMBER_RE.match(text)
    if match:
        value = float(match.group("num"))
        if match.group("sign") == "-":
            value = -value
        return ThresholdValue.level(value, raw=text)

    match = _DELTA_RE.match(text)
    if match:
        sign = 1 if match.group("dir").upper() == "POSITIVE" else -1
        return ThresholdValue.delta(sign, raw=text)

    return ThresholdValue.malformed(text)


def parse_threshold_matrix(table: dict[str, Any]) -> ThresholdMatrix:
    """Parse a {classification: {rating: cell}} table."""
    matrix: ThresholdMatrix = {}
    for class_name, cells in (table or {}).items():
        classification = StockClassification.parse(class_name)
        if classification is None:
            raise CatalogError(f"Unknown classification in thresholds: {class_name}")
        row = {}
        for rating, cell in (cells or {}).items():
            rating_value = int(rating)
            if rating_value not in RATINGS:
                raise CatalogError(f"Rating out of range: {rating}")
            row[rating_value] = parse_threshold(cell)
        matrix[classification] = row
    return matrix


def _uniform(comp: dict, cat: dict, cycl: dict) -> dict[str, dict]:
    return {"Compounder": comp, "Catalyst": cat, "Cyclical": cycl}


def _row(v1, v2, v3, v4) -> dict[int, str]:
    return {1: v1, 2: v2, 3: v3, 4: v4}


POS_D = "Δ POSITIVE"
NEG_D = "Δ NEGATIVE"
NA = "N/A"

DEFAULT_RULES: list[dict[str, Any]] = [
    # Position increase
    {
        "rule_id": "price-52wk",
        "name": "Price % vs 52-wk High",
        "action_type": "PositionIncrease",
        "evaluation_method": "percent",
        "evaluation_logic": "below",
        "data_source": "historical_prices",
        "signal": "pct_from_52wk_high",
        "order_number": 1,
        "description": "Price is below its 52-week high by the threshold percentage",
        "thresholds": _uniform(
            _row("10%", "15%", "20%", NA),
            _row("20%", NA, NA, NA),
            _row("15%", "20%", NA, NA),
        ),
    },
    {
        "rule_id": "rsi-low",
        "name": "RSI (Low)",
        "action_type": "PositionIncrease",
        "evaluation_method": "value",
        "evaluation_logic": "below",
        "data_source": "rsi_data",
        "signal": "rsi14",
        "order_number": 2,
        "description": "14-day RSI below the oversold level",
        "thresholds": _uniform(
            _row("40", "40", "40", NA),
            _row("30", "30", "30", NA),
            _row("35", "35", "35", NA),
        ),
    },
    {
        "rule_id": "macd-below",
        "name": "MACD Positive Crossover",
        "action_type": "PositionIncrease",
        "evaluation_method": "delta",
        "evaluation_logic": "positive",
        "data_source": "macd_data",
        "signal": "macd_histogram_delta",
        "order_number": 3,
        "description": "MACD histogram turning up",
        "thresholds": _uniform(
            _row(POS_D, POS_D, POS_D, NA),
            _row(POS_D, POS_D, POS_D, NA),
            _row(POS_D, POS_D, POS_D, NA),
        ),
    },
    {
        "rule_id": "golden-cross-pos",
        "name": "Golden Cross",
        "action_type": "PositionIncrease",
        "evaluation_method": "delta",
        "evaluation_logic": "positive",
        "data_source": "historical_prices",
        "signal": "ma_cross",
        "order_number": 4,
        "description": "50-day MA crossed above the 200-day MA",
        "thresholds": _uniform(
            _row(POS_D, POS_D, POS_D, NA),
            _row(POS_D, POS_D, POS_D, NA),
            _row(POS_D, POS_D, POS_D, NA),
        ),
    },
    {
        "rule_id": "sector-perf-neg",
        "name": "Sector Underperformance",
        "action_type": "PositionIncrease",
        "evaluation_method": "percent",
        "evaluation_logic": "below",
        "data_source": "market_indices",
        "signal": "sector_perf_diff",
        "order_number": 5,
        "description": "90-day performance lags the regional benchmark",
        "thresholds": _uniform(
            _row("-10%", "-15%", "-15%", NA),
            _row("-20%", "-20%", "-20%", NA),
            _row("-15%", "-15%", "-15%", NA),
        ),
    },
    {
        "rule_id": "at-200ma",
        "name": "At 200-day MA",
        "action_type": "PositionIncrease",
        "evaluation_method": "percent",
        "evaluation_logic": "at",
        "data_source": "historical_prices",
        "signal": "pct_from_200ma",
        "order_number": 6,
        "description": "Price within a band around the 200-day moving average",
        "thresholds": _uniform(
            _row("+/- 2.5%", "+/- 2.5%", "+/- 2.5%", NA),
            _row(NA, NA, NA, NA),
            _row("+/- 2.5%", "+/- 2.5%", NA, NA),
        ),
    },
    # Position decrease
    {
        "rule_id": "price-90day",
        "name": "90-day Price Increase",
        "action_type": "PositionDecrease",
        "evaluation_method": "percent",
        "evaluation_logic": "above",
        "data_source": "historical_prices",
        "signal": "price_change_90d",
        "order_number": 1,
        "description": "Price rose more than the threshold over 90 days",
        "thresholds": _uniform(
            _row(NA, "25%", "25%", "20%"),
            _row("25%", "20%", "15%", "20%"),
            _row("25%", "20%", "15%", "20%"),
        ),
    },
    {
        "rule_id": "max-weight",
        "name": "Max Portfolio Weight",
        "action_type": "PositionDecrease",
        "evaluation_method": "percent",
        "evaluation_logic": "above",
        "data_source": "portfolio",
        "signal": "position_weight",
        "order_number": 2,
        "description": "Position weight exceeds the maximum for its tier",
        "regions": ["USD", "CAD"],
        "thresholds": _uniform(
            _row("8%", "8%", "5%", "4%"),
            _row("6%", "4%", "4%", "4%"),
            _row("6%", "6%", "4%", "4%"),
        ),
    },
    {
        "rule_id": "max-weight-intl",
        "name": "Max Portfolio Weight (INTL)",
        "action_type": "PositionDecrease",
        "evaluation_method": "percent",
        "evaluation_logic": "above",
        "data_source": "portfolio",
        "signal": "position_weight",
        "order_number": 3,
        "description": "International position weight exceeds the maximum for its tier",
        "regions": ["INTL"],
        "thresholds": _uniform(
            _row("10%", "10%", "7%", "6%"),
            _row("8%", "6%", "6%", "6%"),
            _row("8%", "8%", "6%", "6%"),
        ),
    },
    {
        "rule_id": "active-risk",
        "name": "Active Risk",
        "action_type": "PositionDecrease",
        "evaluation_method": "percent",
        "evaluation_logic": "above",
        "data_source": "portfolio",
        "signal": "active_risk",
        "order_number": 4,
        "description": "Weight above benchmark weight exceeds the threshold",
        "thresholds": _uniform(
            _row(NA, NA, NA, NA),
            _row("4%", "4%", "4%", "4%"),
            _row("5%", "5%", "5%", "5%"),
        ),
    },
    {
        "rule_id": "rsi-high",
        "name": "RSI (High)",
        "action_type": "PositionDecrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "rsi_data",
        "signal": "rsi14",
        "order_number": 5,
        "description": "14-day RSI above the overbought level",
        "thresholds": _uniform(
            _row(NA, "70", "70", "70"),
            _row("60", "60", "60", "60"),
            _row("70", "70", "70", "70"),
        ),
    },
    {
        "rule_id": "macd-above",
        "name": "MACD Negative Crossover",
        "action_type": "PositionDecrease",
        "evaluation_method": "delta",
        "evaluation_logic": "negative",
        "data_source": "macd_data",
        "signal": "macd_histogram_delta",
        "order_number": 6,
        "description": "MACD histogram turning down",
        "thresholds": _uniform(
            _row(NA, NEG_D, NEG_D, NEG_D),
            _row(NEG_D, NEG_D, NEG_D, NEG_D),
            _row(NEG_D, NEG_D, NEG_D, NEG_D),
        ),
    },
    {
        "rule_id": "golden-cross-neg",
        "name": "Death Cross",
        "action_type": "PositionDecrease",
        "evaluation_method": "delta",
        "evaluation_logic": "negative",
        "data_source": "historical_prices",
        "signal": "ma_cross",
        "order_number": 7,
        "description": "50-day MA crossed below the 200-day MA",
        "thresholds": _uniform(
            _row(NA, NEG_D, NEG_D, NEG_D),
            _row(NEG_D, NEG_D, NEG_D, NEG_D),
            _row(NEG_D, NEG_D, NEG_D, NEG_D),
        ),
    },
    {
        "rule_id": "sector-perf-pos",
        "name": "Sector Outperformance",
        "action_type": "PositionDecrease",
        "evaluation_method": "percent",
        "evaluation_logic": "above",
        "data_source": "market_indices",
        "signal": "sector_perf_diff",
        "order_number": 8,
        "description": "90-day performance leads the regional benchmark",
        "thresholds": _uniform(
            _row(NA, "10%", "15%", "15%"),
            _row("20%", "20%", "20%", "20%"),
            _row("15%", "15%", "15%", "15%"),
        ),
    },
    {
        "rule_id": "under-200ma",
        "name": "Under 200-day MA",
        "action_type": "PositionDecrease",
        "evaluation_method": "percent",
        "evaluation_logic": "below",
        "data_source": "historical_prices",
        "signal": "pct_from_200ma",
        "order_number": 9,
        "description": "Price below the 200-day moving average by the threshold",
        "thresholds": _uniform(
            _row(NA, "- 5%", "- 5%", NA),
            _row("- 5%", "- 5%", "- 5%", "- 5%"),
            _row("- 5%", "- 5%", "- 5%", "- 5%"),
        ),
    },
    # Rating increase
    {
        "rule_id": "earnings-quality",
        "name": "Earnings Quality",
        "action_type": "RatingIncrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "earnings_quality_points",
        "order_number": 1,
        "description": "Quarter point grading over the last four quarters",
        "thresholds": _uniform(
            _row(NA, "5", "5", "5"),
            _row(NA, "5", "5", "5"),
            _row(NA, "5", "5", "5"),
        ),
    },
    {
        "rule_id": "ebitda-margin",
        "name": "EBITDA Margin Improvement",
        "action_type": "RatingIncrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "ebitda_margin_up_streak",
        "order_number": 2,
        "description": "Consecutive quarters of YoY EBITDA margin improvement",
        "thresholds": _uniform(
            _row(NA, "4", "3", "2"),
            _row(NA, "4", "3", "2"),
            _row(NA, "4", "3", "2"),
        ),
    },
    {
        "rule_id": "roic-increase",
        "name": "ROIC Improvement",
        "action_type": "RatingIncrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "roic_up_streak",
        "order_number": 3,
        "description": "Consecutive quarters of YoY ROIC improvement",
        "thresholds": _uniform(
            _row(NA, "4", "3", "2"),
            _row(NA, "4", "3", "2"),
            _row(NA, "4", "3", "2"),
        ),
    },
    {
        "rule_id": "debt-reduction",
        "name": "Debt Reduction",
        "action_type": "RatingIncrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "net_debt_down_streak",
        "order_number": 4,
        "description": "Consecutive quarters of YoY net debt reduction",
        "thresholds": _uniform(
            _row(NA, "4", "3", "2"),
            _row(NA, "4", "3", "2"),
            _row(NA, "4", "3", "2"),
        ),
    },
    # Rating decrease
    {
        "rule_id": "negative-quarters",
        "name": "Negative Quarters",
        "action_type": "RatingDecrease",
        "evaluation_method": "value",
        "evaluation_logic": "below",
        "data_source": "earnings",
        "signal": "earnings_surprise_streak",
        "order_number": 1,
        "description": "Consecutive earnings misses",
        "thresholds": _uniform(
            _row("-4", "-4", "-4", NA),
            _row("-4", "-4", "-4", NA),
            _row("-4", "-4", "-4", NA),
        ),
    },
    {
        "rule_id": "ebitda-margin-neg",
        "name": "EBITDA Margin Deterioration",
        "action_type": "RatingDecrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "ebitda_margin_down_streak",
        "order_number": 2,
        "description": "Consecutive quarters of YoY EBITDA margin decline",
        "thresholds": _uniform(
            _row("3", "2", "2", NA),
            _row("3", "2", "2", NA),
            _row("3", "2", "2", NA),
        ),
    },
    {
        "rule_id": "roic-decrease",
        "name": "ROIC Deterioration",
        "action_type": "RatingDecrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "roic_down_streak",
        "order_number": 3,
        "description": "Consecutive quarters of YoY ROIC decline",
        "thresholds": _uniform(
            _row("3", "2", "2", NA),
            _row("3", "2", "2", NA),
            _row("3", "2", "2", NA),
        ),
    },
    {
        "rule_id": "debt-increase",
        "name": "Debt Increase",
        "action_type": "RatingDecrease",
        "evaluation_method": "value",
        "evaluation_logic": "above",
        "data_source": "earnings",
        "signal": "net_debt_up_streak",
        "order_number": 4,
        "description": "Consecutive quarters of YoY net debt increase",
        "thresholds": _uniform(
            _row("3", "2", "2", NA),
            _row("3", "2", "2", NA),
            _row("3", "2", "2", NA),
        ),
    },
]


def rule_from_dict(data: dict[str, Any]) -> MatrixRule:
    """
    Build a MatrixRule from a plain mapping (YAML or built-in definition).

    Raises:
        CatalogError: If a required field is missing or has an unknown value
    """
    try:
        rule_id = str(data["rule_id"])
        signal = str(data["signal"])
        if signal not in SignalBundle.field_names():
            raise CatalogError(f"Rule {rule_id}: unknown signal '{signal}'")
        regions = data.get("regions")
        return MatrixRule(
            rule_id=rule_id,
            name=str(data.get("name", rule_id)),
            action_type=ActionType(data["action_type"]),
            thresholds=parse_threshold_matrix(data.get("thresholds", {})),
            evaluation_method=EvaluationMethod(data["evaluation_method"]),
            evaluation_logic=EvaluationLogic(data["evaluation_logic"]),
            data_source=str(data.get("data_source", "")),
            signal=signal,
            order_number=int(data["order_number"]),
            description=str(data.get("description", "")),
            regions=frozenset(r.upper() for r in regions) if regions else None,
        )
    except KeyError as e:
        raise CatalogError(f"Rule definition missing field: {e}") from e
    except ValueError as e:
        raise CatalogError(f"Invalid rule definition {data.get('rule_id')}: {e}") from e


class RuleCatalog:
    """Immutable set of matrix rules, partitioned by action type."""

    def __init__(self, rules: Iterable[MatrixRule]):
        ordered = sorted(rules, key=lambda r: r.sort_key)
        self._rules: tuple[MatrixRule, ...] = tuple(ordered)
        self._by_id = {rule.rule_id: rule for rule in self._rules}
        if len(self._by_id) != len(self._rules):
            raise CatalogError("Duplicate rule_id in catalog")
        self._validate_order_numbers()

    def _validate_order_numbers(self) -> None:
        for action_type in ACTION_ORDER:
            numbers = [r.order_number for r in self._rules if r.action_type is action_type]
            if numbers and numbers != list(range(1, len(numbers) + 1)):
                raise CatalogError(
                    f"Order numbers for {action_type.value} must be 1..{len(numbers)}, "
                    f"got {numbers}"
                )

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    def get(self, rule_id: str) -> Optional[MatrixRule]:
        return self._by_id.get(rule_id)

    def rules_for(self, action_types: Iterable[ActionType]) -> list[MatrixRule]:
        """Rules of the given action types in priority order."""
        wanted = set(action_types)
        return [rule for rule in self._rules if rule.action_type in wanted]

    def resolve_threshold(
        self,
        rule: MatrixRule,
        classification: StockClassification,
        rating: int,
    ) -> ThresholdValue:
        """Threshold cell for a classification/rating pair; N/A when absent."""
        row = rule.thresholds.get(classification)
        if not row:
            return ThresholdValue.not_applicable()
        cell = row.get(rating)
        if cell is None:
            return ThresholdValue.not_applicable()
        return cell


def default_catalog() -> RuleCatalog:
    """Catalog with the built-in decision matrices."""
    return RuleCatalog(rule_from_dict(definition) for definition in DEFAULT_RULES)


def load_catalog(path: str) -> RuleCatalog:
    """
    Load a rule catalog from a YAML file.

    The file holds a top-level ``rules`` list using the same fields as the
    built-in definitions.

    Raises:
        FileNotFoundError: If the file doesn't exist
        CatalogError: If a rule is invalid
    """
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Rule catalog not found: {path}")

    with open(catalog_path) as f:
        raw = yaml.safe_load(f) or {}

    definitions = raw.get("rules")
    if not isinstance(definitions, list):
        raise CatalogError(f"Rule catalog {path} has no 'rules' list")

    catalog = RuleCatalog(rule_from_dict(definition) for definition in definitions)
    logger.info(f"Loaded {len(catalog)} matrix rules from {path}")
    return catalog
