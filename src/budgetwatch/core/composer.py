"""Alert composition (core domain).

Composition is pure assembly: it turns a snapshot, its status and a minted
token into the context a renderer needs. The canonical payload used for
fingerprinting is produced by the same module so that the dedup key and the
rendered message always agree on what counts as the same content.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from budgetwatch.core.config import AlertConfig
from budgetwatch.core.links import build_access_link
from budgetwatch.core.models import (
    BudgetSnapshot,
    MintedToken,
    RenderContext,
    StatusTier,
    ThresholdStatus,
)
from budgetwatch.core.thresholds import to_amount

_CENT = Decimal("0.01")

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True)
class TierMeta:
    label: str
    description: str
    subject_lead: str
    text_color: str
    bar_color: str
    badge_background: str


TIER_META: dict[StatusTier, TierMeta] = {
    StatusTier.HEALTHY: TierMeta(
        label="Healthy spending",
        description="Spending is within plan. Keep following new entries.",
        subject_lead="Budget update",
        text_color="#065f46",
        bar_color="#10b981",
        badge_background="#dcfce7",
    ),
    StatusTier.CAUTION: TierMeta(
        label="Moderate spending",
        description="Spending is moderate. Keep an eye on upcoming entries.",
        subject_lead="Budget attention",
        text_color="#1d4ed8",
        bar_color="#2563eb",
        badge_background="#dbeafe",
    ),
    StatusTier.WARNING: TierMeta(
        label="Spending needs attention",
        description="This category is close to its configured limit. Review recent expenses.",
        subject_lead="Budget alert",
        text_color="#b45309",
        bar_color="#f59e0b",
        badge_background="#fef3c7",
    ),
    StatusTier.CRITICAL: TierMeta(
        label="Limit exceeded",
        description="The limit has been exceeded. Review the entries in this category now.",
        subject_lead="Limit exceeded",
        text_color="#b91c1c",
        bar_color="#ef4444",
        badge_background="#fee2e2",
    ),
}


def format_currency(value: Any, symbol: str = "$") -> str:
    amount = to_amount(value).quantize(_CENT, rounding=ROUND_HALF_UP)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_percentage(ratio: Optional[float]) -> str:
    if ratio is None:
        return "n/a"
    return f"{ratio * 100:.1f}%"


def format_month_label(reference_month: str) -> str:
    """Turn 'YYYY-MM' into 'May 2024'; anything else is returned as-is."""

    year, sep, month = (reference_month or "").strip().partition("-")
    if not sep or not year.isdigit() or not month.isdigit():
        return (reference_month or "").strip()
    month_number = int(month)
    if not 1 <= month_number <= 12:
        return reference_month.strip()
    return f"{MONTH_NAMES[month_number - 1]} {year}"


def _first_name(name: Optional[str]) -> str:
    parts = (name or "").split()
    return parts[0] if parts else ""


def _money(value: Decimal) -> Decimal:
    return to_amount(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def build_canonical_payload(snapshot: BudgetSnapshot, status: ThresholdStatus) -> dict[str, Any]:
    """Return the content identity of an alert.

    The access token is not part of it: it is minted fresh for each
    send and would otherwise make every alert look new.
    """

    return {
        "budgetId": snapshot.budget_id,
        "categoryName": snapshot.category_name,
        "referenceMonth": snapshot.reference_month,
        "recipientId": snapshot.recipient_id,
        "tier": status.tier.value,
        "monthlyLimit": _money(snapshot.monthly_limit),
        "consumption": max(_money(snapshot.consumption), Decimal("0.00")),
        "usageRatio": status.usage_ratio,
        "triggeredThreshold": status.triggered_threshold,
    }


def _build_insights(
    usage_label: str,
    remaining: Decimal,
    triggered_label: Optional[str],
    description: str,
    symbol: str,
) -> tuple[str, ...]:
    insights: list[str] = [usage_label]
    if triggered_label:
        insights.append(f"The alert configured at {triggered_label} has been reached.")
    if remaining > 0:
        insights.append(f"{format_currency(remaining, symbol)} is still available in this budget.")
    elif remaining < 0:
        insights.append(f"The budget is exceeded by {format_currency(abs(remaining), symbol)}.")
    insights.append(description)
    return tuple(dict.fromkeys(item for item in insights if item))


def compose(
    snapshot: BudgetSnapshot,
    status: ThresholdStatus,
    token: MintedToken,
    config: AlertConfig,
) -> RenderContext:
    """Assemble the render context for one alert. No I/O happens here."""

    meta = TIER_META[status.tier]
    symbol = config.currency_symbol
    limit = _money(snapshot.monthly_limit)
    consumption = max(_money(snapshot.consumption), Decimal("0.00"))
    remaining = limit - consumption

    usage_percent = round(status.usage_ratio * 100, 1) if status.usage_ratio is not None else None
    if usage_percent is None:
        usage_label = "No monthly limit is set for this category."
    else:
        usage_label = f"{format_percentage(status.usage_ratio)} of the limit used"

    triggered_label = (
        format_currency(status.triggered_threshold, symbol) if status.triggered_threshold is not None else None
    )

    return RenderContext(
        app_name=config.app_name,
        budget_id=snapshot.budget_id,
        category_name=snapshot.category_name or "Budget",
        reference_month=snapshot.reference_month,
        month_label=format_month_label(snapshot.reference_month),
        recipient_id=snapshot.recipient_id,
        recipient_address=snapshot.recipient_address,
        greeting_name=_first_name(snapshot.recipient_name) or "there",
        tier=status.tier,
        tier_label=meta.label,
        tier_description=meta.description,
        subject_lead=meta.subject_lead,
        text_color=meta.text_color,
        bar_color=meta.bar_color,
        badge_background=meta.badge_background,
        monthly_limit_label=format_currency(limit, symbol),
        consumption_label=format_currency(consumption, symbol),
        remaining=remaining,
        remaining_label=format_currency(abs(remaining), symbol),
        usage_percent=usage_percent,
        usage_label=usage_label,
        triggered_threshold=status.triggered_threshold,
        triggered_threshold_label=triggered_label,
        access_url=build_access_link(config.links, snapshot.budget_id, token.token),
        token_issued_at=token.issued_at,
        token_expires_at=token.expires_at,
        insights=_build_insights(usage_label, remaining, triggered_label, meta.description, symbol),
        preview_text=f"{usage_label.rstrip('.')}. {meta.description}",
        canonical_payload=build_canonical_payload(snapshot, status),
    )


def build_subject(context: RenderContext) -> str:
    """Return e.g. 'Budget alert • Travel - May 2024 (95% used) | Budget Alerts'."""

    month = f" - {context.month_label}" if context.month_label else ""
    usage = f" ({round(context.usage_percent)}% used)" if context.usage_percent is not None else ""
    app = f" | {context.app_name}" if context.app_name else ""
    return f"{context.subject_lead} • {context.category_name}{month}{usage}{app}"
