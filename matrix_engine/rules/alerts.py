"""
Alert generation and reconciliation against active alerts.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from .types import (
    Alert,
    AlertSeverity,
    EvaluationLogic,
    EvaluationMethod,
    ThresholdKind,
    ThresholdValue,
    TriggeredRule,
    format_number,
)

_OPERATORS = {
    EvaluationLogic.ABOVE: ">",
    EvaluationLogic.BELOW: "<",
    EvaluationLogic.AT: "≈",
    EvaluationLogic.POSITIVE: "Δ>",
    EvaluationLogic.NEGATIVE: "Δ<",
}


@dataclass
class Reconciliation:
    """Alerts to insert and active alerts to close for one symbol."""

    to_create: list[Alert] = field(default_factory=list)
    to_deactivate: list[Alert] = field(default_factory=list)


def headline_severity(triggered: Sequence[TriggeredRule]) -> AlertSeverity:
    """Severity from the highest-priority (lowest order number) triggered rule."""
    if not triggered:
        return AlertSeverity.INFO
    return AlertSeverity.for_order_number(min(t.rule.order_number for t in triggered))


def comparison_value(triggered: TriggeredRule) -> str:
    """Threshold as it was compared, e.g. '-10%' for a 10% 'below' cell."""
    threshold: ThresholdValue = triggered.threshold_value
    rule = triggered.rule
    if rule.evaluation_method is EvaluationMethod.DELTA:
        return "0"
    if threshold.kind is ThresholdKind.PERCENT and not threshold.symmetric:
        sign = "-" if rule.evaluation_logic is EvaluationLogic.BELOW else ""
        return f"{sign}{format_number(abs(threshold.value))}%"
    return str(threshold)


def format_message(triggered: TriggeredRule) -> str:
    """Alert headline, e.g. 'RSI (Low) triggered: 38 < 40'."""
    rule = triggered.rule
    operator = _OPERATORS[rule.evaluation_logic]
    return (
        f"{rule.name} triggered: {format_number(triggered.actual_value)} "
        f"{operator} {comparison_value(triggered)}"
    )


def format_details(triggered: TriggeredRule) -> str:
    rule = triggered.rule
    return (
        f"Rule: {rule.rule_id} ({rule.action_type.value}, order {rule.order_number}); "
        f"Actual: {format_number(triggered.actual_value)}; "
        f"Threshold: {triggered.threshold_value}"
    )


def build_alert(
    triggered: TriggeredRule,
    severity: AlertSeverity,
    created_at: Optional[datetime] = None,
) -> Alert:
    return Alert(
        symbol=triggered.symbol,
        message=format_message(triggered),
        details=format_details(triggered),
        severity=severity,
        rule_type=triggered.rule.rule_id,
        region=triggered.region,
        is_active=True,
        created_at=created_at or datetime.now(),
    )


def reconcile(
    symbol: str,
    triggered: Sequence[TriggeredRule],
    existing_active: Sequence[Alert],
    now: Optional[datetime] = None,
    region: Optional[str] = None,
) -> Reconciliation:
    """
    Diff the rules triggered for a symbol against its active alerts.

    Args:
        symbol: Symbol being reconciled
        triggered: Rules triggered for the symbol in this pass
        existing_active: Currently active alerts for the symbol
        now: Timestamp for new alerts
        region: Portfolio region; when given, only that region's alerts are
            considered

    Returns:
        Reconciliation with new alerts (one per newly triggered rule) and the
        active alerts whose rule no longer triggers
    """
    active = [
        a
        for a in existing_active
        if a.symbol == symbol and a.is_active and (region is None or a.region == region)
    ]
    active_types = {a.rule_type for a in active}
    triggered_types = {t.rule.rule_id for t in triggered}
    severity = headline_severity(triggered)

    result = Reconciliation()
    seen = set()
    for item in triggered:
        rule_type = item.rule.rule_id
        if rule_type in active_types or rule_type in seen:
            continue
        seen.add(rule_type)
        result.to_create.append(build_alert(item, severity, now))

    result.to_deactivate = [a for a in active if a.rule_type not in triggered_types]
    return result
