"""
Threshold Engine — time-in-column SLA rule selection.

Boards carry a list of threshold rules ("more than 2 hours → orange",
"more than 8 hours → red"). For an item sitting in a column, every rule
whose condition holds for the elapsed time is a candidate; exactly one is
applied, chosen by severity:

  >, >=   severity = threshold in ms   (longer waits outrank shorter ones)
  <, <=   severity = -threshold in ms  (tighter windows outrank looser ones)
  =       severity = 0

Ties go to the lower `priority` number. Severity is derived on every call
and never stored, so edited rules apply to items already in a column.

Evaluation is read-only and never raises: bad timestamps or malformed rules
degrade to "no rule applies".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Literal

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from core.clock import Clock, get_default_clock
from core.config import get_settings

logger = structlog.get_logger()

ThresholdOperator = Literal[">", "<", "=", ">=", "<="]
ThresholdUnit = Literal["minutes", "hours", "days"]

MS_PER_UNIT = {
    "minutes": 60 * 1000,
    "hours": 60 * 60 * 1000,
    "days": 24 * 60 * 60 * 1000,
}


class ThresholdRule(BaseModel):
    id: str | None = None
    operator: ThresholdOperator
    value: float = Field(..., ge=0)
    unit: ThresholdUnit
    priority: int = 0
    color: str = "#f59e0b"


# ──────────────────────────────────────────────────────────────────────────
# Time helpers
# ──────────────────────────────────────────────────────────────────────────


def parse_entered_at(value: datetime | str | None) -> datetime | None:
    """
    Normalise a column-entry timestamp to an aware UTC datetime.

    Naive datetimes and ISO strings without an offset are UTC, not local
    time. "2025-01-01 10:00:00" (space separator) is accepted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
        if "T" not in raw:
            raw = raw.replace(" ", "T", 1)
        if raw.endswith(("z", "Z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def time_in_column_ms(entered_at: datetime | str | None, now: datetime) -> float | None:
    """Milliseconds since the item entered its column, clamped at zero."""
    start = parse_entered_at(entered_at)
    if start is None:
        return None
    diff = (parse_entered_at(now) - start).total_seconds() * 1000
    # Clock or timezone skew can put the entry slightly in the future
    return diff if diff > 0 else 0.0


def convert_to_unit(milliseconds: float, unit: str) -> float:
    return milliseconds / MS_PER_UNIT[unit]


# ──────────────────────────────────────────────────────────────────────────
# Rule evaluation
# ──────────────────────────────────────────────────────────────────────────


def evaluate_threshold(time_value: float, operator: str, threshold: float) -> bool:
    """Test one rule condition against a time already expressed in its unit."""
    if operator == ">":
        return time_value > threshold
    if operator == "<":
        return time_value < threshold
    if operator == "=":
        return abs(time_value - threshold) < get_settings().threshold_equality_epsilon
    if operator == ">=":
        return time_value >= threshold
    if operator == "<=":
        return time_value <= threshold
    return False


def rule_severity(rule: ThresholdRule) -> float:
    threshold_ms = rule.value * MS_PER_UNIT[rule.unit]
    if rule.operator in (">", ">="):
        return threshold_ms
    if rule.operator in ("<", "<="):
        return -threshold_ms
    return 0.0


def coerce_rules(rules: Iterable[ThresholdRule | dict[str, Any]] | None) -> list[ThresholdRule]:
    """Parse stored rule config, dropping entries that fail validation."""
    parsed: list[ThresholdRule] = []
    if isinstance(rules, (str, bytes, dict)) or not isinstance(rules, Iterable):
        if rules is not None:
            logger.warning("threshold.rules_malformed", rules=rules)
        return parsed
    for raw in rules:
        if isinstance(raw, ThresholdRule):
            parsed.append(raw)
            continue
        try:
            parsed.append(ThresholdRule.model_validate(raw))
        except PydanticValidationError:
            logger.warning("threshold.rule_skipped", rule=raw)
    return parsed


def matching_rules(
    elapsed_ms: float, rules: Iterable[ThresholdRule | dict[str, Any]] | None
) -> list[ThresholdRule]:
    """Every rule whose condition holds, most severe first."""
    matched = [
        rule
        for rule in coerce_rules(rules)
        if evaluate_threshold(convert_to_unit(elapsed_ms, rule.unit), rule.operator, rule.value)
    ]
    matched.sort(key=lambda r: (-rule_severity(r), r.priority))
    return matched


def get_applied_threshold(
    product: Any,
    rules: Iterable[ThresholdRule | dict[str, Any]] | None,
    clock: Clock | None = None,
) -> ThresholdRule | None:
    """Return the single rule that applies to `product` right now, or None."""
    rules = coerce_rules(rules)
    entered_at = getattr(product, "column_entered_at", None)
    if not rules or entered_at is None:
        return None

    now = (clock or get_default_clock()).now_utc()
    elapsed_ms = time_in_column_ms(entered_at, now)
    if elapsed_ms is None:
        return None

    matched = matching_rules(elapsed_ms, rules)
    return matched[0] if matched else None


# ──────────────────────────────────────────────────────────────────────────
# Display helpers
# ──────────────────────────────────────────────────────────────────────────

_OPERATOR_TEXT = {
    ">": "more than",
    "<": "less than",
    "=": "exactly",
    ">=": "at least",
    "<=": "at most",
}


def format_time_duration(milliseconds: float) -> str:
    """Compact duration such as '1d 2h 5m', '3h 0m', '12m' or '<1m'."""
    total_minutes = int(milliseconds // 60000)
    days, rem = divmod(total_minutes, 60 * 24)
    hours, minutes = divmod(rem, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m" if minutes > 0 else "<1m"


def format_threshold_rule(rule: ThresholdRule) -> str:
    operator_text = _OPERATOR_TEXT.get(rule.operator, rule.operator)
    value = int(rule.value) if float(rule.value).is_integer() else rule.value
    unit_text = rule.unit[:-1] if value == 1 else rule.unit
    return f"If {operator_text} {value} {unit_text}"
