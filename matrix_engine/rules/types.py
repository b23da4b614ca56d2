"""
Rule, threshold and alert types used by the matrix engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class StockClassification(Enum):
    """Investment style tag of a holding."""

    COMPOUNDER = "Compounder"
    CATALYST = "Catalyst"
    CYCLICAL = "Cyclical"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["StockClassification"]:
        """Parse full or abbreviated names. Returns None if unrecognized."""
        if not value:
            return None
        key = value.strip().lower()
        return _CLASSIFICATION_ALIASES.get(key)


_CLASSIFICATION_ALIASES = {
    "compounder": StockClassification.COMPOUNDER,
    "comp": StockClassification.COMPOUNDER,
    "catalyst": StockClassification.CATALYST,
    "cat": StockClassification.CATALYST,
    "cyclical": StockClassification.CYCLICAL,
    "cycl": StockClassification.CYCLICAL,
}

RATINGS = (1, 2, 3, 4)


def parse_rating(value) -> Optional[int]:
    """Parse a conviction rating (1-4). Returns None if invalid."""
    if value is None or isinstance(value, bool):
        return None
    try:
        rating = int(str(value).strip())
    except ValueError:
        return None
    return rating if rating in RATINGS else None


class ActionType(Enum):
    """What a triggered rule recommends."""

    POSITION_INCREASE = "PositionIncrease"
    POSITION_DECREASE = "PositionDecrease"
    RATING_INCREASE = "RatingIncrease"
    RATING_DECREASE = "RatingDecrease"


# Display and sort order of action groups
ACTION_ORDER = {
    ActionType.POSITION_INCREASE: 0,
    ActionType.POSITION_DECREASE: 1,
    ActionType.RATING_INCREASE: 2,
    ActionType.RATING_DECREASE: 3,
}


class EvaluationPass(Enum):
    """Position and rating rules are evaluated in separate passes."""

    POSITION = "position"
    RATING = "rating"

    @property
    def action_types(self) -> tuple[ActionType, ...]:
        if self is EvaluationPass.POSITION:
            return (ActionType.POSITION_INCREASE, ActionType.POSITION_DECREASE)
        return (ActionType.RATING_INCREASE, ActionType.RATING_DECREASE)


class EvaluationMethod(Enum):
    PERCENT = "percent"
    VALUE = "value"
    DELTA = "delta"


class EvaluationLogic(Enum):
    ABOVE = "above"
    BELOW = "below"
    AT = "at"
    POSITIVE = "positive"
    NEGATIVE = "negative"


class ThresholdKind(Enum):
    PERCENT = "percent"
    LEVEL = "level"
    DELTA = "delta"
    NOT_APPLICABLE = "n/a"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ThresholdValue:
    """
    One cell of a rule's threshold matrix.

    Only one of the payload fields is meaningful for a given kind:
    ``value`` for PERCENT and LEVEL, ``sign`` (+1/-1) for DELTA,
    ``raw`` always keeps the unparsed cell text.
    """

    kind: ThresholdKind
    value: Optional[float] = None
    sign: Optional[int] = None
    symmetric: bool = False
    raw: str = ""

    @classmethod
    def percent(cls, value: float, symmetric: bool = False, raw: str = "") -> "ThresholdValue":
        return cls(ThresholdKind.PERCENT, value=value, symmetric=symmetric, raw=raw)

    @classmethod
    def level(cls, value: float, raw: str = "") -> "ThresholdValue":
        return cls(ThresholdKind.LEVEL, value=value, raw=raw)

    @classmethod
    def delta(cls, sign: int, raw: str = "") -> "ThresholdValue":
        return cls(ThresholdKind.DELTA, sign=1 if sign > 0 else -1, raw=raw)

    @classmethod
    def not_applicable(cls, raw: str = "N/A") -> "ThresholdValue":
        return cls(ThresholdKind.NOT_APPLICABLE, raw=raw)

    @classmethod
    def malformed(cls, raw: str) -> "ThresholdValue":
        return cls(ThresholdKind.MALFORMED, raw=raw)

    @property
    def is_applicable(self) -> bool:
        return self.kind is not ThresholdKind.NOT_APPLICABLE

    def __str__(self) -> str:
        if self.kind is ThresholdKind.PERCENT:
            prefix = "±" if self.symmetric else ""
            return f"{prefix}{format_number(self.value)}%"
        if self.kind is ThresholdKind.LEVEL:
            return format_number(self.value)
        if self.kind is ThresholdKind.DELTA:
            return "Δ POSITIVE" if self.sign > 0 else "Δ NEGATIVE"
        if self.kind is ThresholdKind.NOT_APPLICABLE:
            return "N/A"
        return self.raw


def format_number(value: float) -> str:
    """Format a number without trailing zeros (38.0 -> '38', 8.5 -> '8.5')."""
    return f"{value:.2f}".rstrip("0").rstrip(".")


# Classification -> rating -> threshold cell
ThresholdMatrix = dict[StockClassification, dict[int, ThresholdValue]]


@dataclass(frozen=True)
class MatrixRule:
    """A single matrix decision rule."""

    rule_id: str
    name: str
    action_type: ActionType
    thresholds: ThresholdMatrix
    evaluation_method: EvaluationMethod
    evaluation_logic: EvaluationLogic
    data_source: str
    signal: str
    order_number: int
    description: str = ""
    regions: Optional[frozenset[str]] = None

    def applies_to_region(self, region: Optional[str]) -> bool:
        if self.regions is None:
            return True
        return region is not None and region.upper() in self.regions

    @property
    def sort_key(self) -> tuple[int, int]:
        return (ACTION_ORDER[self.action_type], self.order_number)


@dataclass(frozen=True)
class TriggeredRule:
    """A rule whose live signal crossed its threshold for one holding."""

    symbol: str
    rule: MatrixRule
    actual_value: float
    threshold_value: ThresholdValue
    region: Optional[str] = None


class AlertSeverity(Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @classmethod
    def for_order_number(cls, order_number: int) -> "AlertSeverity":
        if order_number == 1:
            return cls.CRITICAL
        if order_number == 2:
            return cls.WARNING
        return cls.INFO


@dataclass
class Alert:
    """Alert raised for a symbol by a matrix rule."""

    symbol: str
    message: str
    severity: AlertSeverity
    rule_type: str
    region: Optional[str] = None
    details: str = ""
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)
    closed_at: Optional[datetime] = None
    id: Optional[int] = None
