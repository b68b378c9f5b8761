"""JSON-to-core snapshot mapping adapter.

Snapshots are produced by an external reporting layer; this adapter accepts
its JSON export (camelCase or snake_case keys) and keeps that shape out of
the core.
"""

from __future__ import annotations

import json
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from budgetwatch.core.models import BudgetSnapshot
from budgetwatch.core.thresholds import normalize_thresholds, to_amount

_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})")
_FALSY = {"0", "false", "no", "off"}

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "budget_id": ("budgetId", "budget_id", "id"),
    "category_name": ("categoryName", "category_name", "name"),
    "monthly_limit": ("monthlyLimit", "monthly_limit", "limit"),
    "consumption": ("consumption", "spent"),
    "thresholds": ("thresholds",),
    "reference_month": ("referenceMonth", "reference_month", "monthKey", "month"),
    "recipient_id": ("recipientId", "recipient_id", "userId"),
    "recipient_address": ("recipientAddress", "recipient_address", "email"),
    "recipient_name": ("recipientName", "recipient_name", "userName"),
    "notifications_enabled": ("notificationsEnabled", "notifications_enabled", "emailEnabled"),
}


def _pick(raw: dict[str, Any], field: str) -> Any:
    for key in _FIELD_ALIASES[field]:
        if key in raw:
            return raw[key]
    return None


def normalize_reference_month(value: Any, now: Optional[datetime] = None) -> str:
    """Return 'YYYY-MM'; unparsable values fall back to the current month."""

    if isinstance(value, (datetime, date)):
        return f"{value.year:04d}-{value.month:02d}"
    match = _MONTH_KEY.match(str(value or "").strip())
    if match and 1 <= int(match.group(2)) <= 12:
        return f"{match.group(1)}-{match.group(2)}"
    now = now or datetime.now(timezone.utc)
    return f"{now.year:04d}-{now.month:02d}"


def _required_int(raw: dict[str, Any], field: str) -> int:
    value = _pick(raw, field)
    if value is None or isinstance(value, bool):
        raise ValueError(f"Snapshot is missing {_FIELD_ALIASES[field][0]}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Snapshot field {_FIELD_ALIASES[field][0]} must be an integer") from exc


def _enabled_flag(value: Any) -> bool:
    """Missing means enabled; only an explicit false-like value opts out."""

    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() not in _FALSY
    return bool(value)


def snapshot_from_dict(raw: dict[str, Any], now: Optional[datetime] = None) -> BudgetSnapshot:
    """Build a BudgetSnapshot; monetary fields are normalized, ids must be valid."""

    name = _pick(raw, "recipient_name")
    return BudgetSnapshot(
        budget_id=_required_int(raw, "budget_id"),
        category_name=str(_pick(raw, "category_name") or "Budget"),
        monthly_limit=to_amount(_pick(raw, "monthly_limit")),
        consumption=to_amount(_pick(raw, "consumption")),
        thresholds=normalize_thresholds(_pick(raw, "thresholds")),
        reference_month=normalize_reference_month(_pick(raw, "reference_month"), now),
        recipient_id=_required_int(raw, "recipient_id"),
        recipient_address=str(_pick(raw, "recipient_address") or "").strip(),
        recipient_name=str(name) if name else None,
        notifications_enabled=_enabled_flag(_pick(raw, "notifications_enabled")),
    )


def snapshots_from_json(document: Any, now: Optional[datetime] = None) -> list[BudgetSnapshot]:
    """Accept either a list of snapshots or ``{"snapshots": [...]}``."""

    if isinstance(document, dict):
        document = document.get("snapshots", [])
    if not isinstance(document, list):
        raise ValueError("Snapshot document must be a list or contain a 'snapshots' list")
    items: Iterable[dict[str, Any]] = document
    return [snapshot_from_dict(item, now) for item in items]


def load_snapshots(path: Union[str, Path], now: Optional[datetime] = None) -> list[BudgetSnapshot]:
    with open(path, "r", encoding="utf-8") as handle:
        return snapshots_from_json(json.load(handle), now)
