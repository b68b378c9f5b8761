"""Deduplication helpers (core domain).

Fingerprints are SHA-256 digests over a canonical serialization, so two
alerts that would carry the same content for the same recipient always hash
identically, whatever order their fields were assembled in.
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from budgetwatch.core.models import StatusTier

_CENT = Decimal("0.01")


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_recipient(recipient: str) -> str:
    """Normalize a recipient address for deterministic fingerprinting."""

    return _collapse_whitespace(recipient).lower()


def _format_number(value: Any) -> str:
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"Cannot fingerprint non-finite number: {value!r}")
    try:
        quantized = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Cannot fingerprint out-of-range number: {value!r}") from exc
    if quantized == 0:
        # -0.00 and 0.00 are the same content.
        quantized = abs(quantized)
    return f"{quantized:f}"


def canonicalize(value: Any) -> str:
    """Serialize a JSON-like value canonically.

    Keys are sorted, numbers always carry two decimals, None becomes null
    while absent keys stay absent, and enums serialize by value.
    """

    if value is None:
        return "null"
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (datetime, date)):
        return json.dumps(value.isoformat())
    if isinstance(value, Mapping):
        items = sorted((str(key), item) for key, item in value.items())
        return "{" + ",".join(f"{json.dumps(key, ensure_ascii=False)}:{canonicalize(item)}" for key, item in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonicalize(item) for item in value) + "]"
    if isinstance(value, (set, frozenset)):
        return "[" + ",".join(sorted(canonicalize(item) for item in value)) + "]"
    raise TypeError(f"Cannot fingerprint value of type {type(value).__name__}")


def fingerprint(event_id: str, recipient: str, canonical_payload: Mapping[str, Any]) -> str:
    """Return the 64-hex-char content hash used as the dedup key."""

    document = {
        "event": event_id,
        "recipient": recipient,
        "payload": canonical_payload,
    }
    return hashlib.sha256(canonicalize(document).encode("utf-8")).hexdigest()


def build_event_id(budget_id: int) -> str:
    return f"budget:{budget_id}"


def build_cycle_key(tier: StatusTier, triggered_threshold: Optional[Decimal], reference_month: str) -> str:
    """Return the coarse cooldown bucket: one alert per tier, threshold and month."""

    threshold_part = _format_number(triggered_threshold) if triggered_threshold is not None else "none"
    return f"{tier.value}:threshold:{threshold_part}:{reference_month}"
