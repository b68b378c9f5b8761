"""Threshold evaluation (core domain).

Thresholds are absolute monetary amounts in the same currency as the limit
and the consumption, not fractions of the limit. The evaluator is total: bad
numbers are normalised instead of raising, so a malformed snapshot degrades
to a harmless status rather than breaking a whole batch.
"""

from __future__ import annotations

import json
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from budgetwatch.core.models import StatusTier, ThresholdStatus

ZERO = Decimal("0")
CENT = Decimal("0.01")
# Largest amount a budget column holds: decimal(12, 2).
MAX_AMOUNT = Decimal("9999999999.99")

CRITICAL_RATIO = Decimal("1.0")
WARNING_RATIO = Decimal("0.85")
CAUTION_RATIO = Decimal("0.60")

_SEPARATORS = re.compile(r"[;,\s]+")


def to_amount(value: Any) -> Decimal:
    """Coerce a numeric-ish value to a cent-rounded Decimal, defaulting to zero.

    Values outside the decimal(12, 2) range count as malformed.
    """

    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not amount.is_finite() or amount.copy_abs() > MAX_AMOUNT:
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _threshold_levels(thresholds: Any) -> list[Decimal]:
    if thresholds is None:
        return []
    if isinstance(thresholds, (str, bytes, int, float, Decimal)):
        thresholds = [thresholds]
    levels = {to_amount(item) for item in thresholds}
    return sorted(level for level in levels if level > ZERO)


def evaluate(limit: Any, consumption: Any, thresholds: Optional[Iterable[Any]] = None) -> ThresholdStatus:
    """Return the status tier and the highest threshold crossed.

    Tier precedence (first match wins):
    - critical: consumption reached the limit
    - warning: consumption reached the highest threshold, or 85% of the limit
    - caution: consumption reached 60% of the limit
    - healthy: anything else

    The usage ratio is None when no positive limit is configured.
    """

    limit_value = to_amount(limit)
    consumption_value = max(to_amount(consumption), ZERO)
    levels = _threshold_levels(thresholds)

    ratio: Optional[Decimal] = consumption_value / limit_value if limit_value > ZERO else None

    triggered: Optional[Decimal] = None
    for level in levels:
        if level > consumption_value:
            break
        triggered = level

    if ratio is not None and ratio >= CRITICAL_RATIO:
        tier = StatusTier.CRITICAL
    elif (levels and consumption_value >= levels[-1]) or (ratio is not None and ratio >= WARNING_RATIO):
        tier = StatusTier.WARNING
    elif ratio is not None and ratio >= CAUTION_RATIO:
        tier = StatusTier.CAUTION
    else:
        tier = StatusTier.HEALTHY

    return ThresholdStatus(
        tier=tier,
        usage_ratio=float(ratio) if ratio is not None else None,
        triggered_threshold=triggered,
    )


def _coerce_threshold_input(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return []
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return parsed
        return [item for item in _SEPARATORS.split(trimmed) if item]
    return [value]


def normalize_thresholds(value: Any) -> tuple[Decimal, ...]:
    """Parse configured thresholds into a sorted, unique tuple of amounts.

    Accepts a list, a JSON array string, a comma/semicolon/space separated
    string or a single number. Entries that are not positive finite numbers
    are dropped; amounts are rounded to cents.
    """

    amounts: set[Decimal] = set()
    for item in _coerce_threshold_input(value):
        amount = to_amount(item)
        if amount > ZERO:
            amounts.add(amount)
    return tuple(sorted(amounts))
