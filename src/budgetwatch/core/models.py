"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage or delivery-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class StatusTier(str, Enum):
    """Severity bucket derived from usage ratio and threshold crossing."""

    HEALTHY = "healthy"
    CAUTION = "caution"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _TIER_SEVERITY[self]

    @classmethod
    def parse(cls, value: "str | StatusTier") -> "StatusTier":
        if isinstance(value, StatusTier):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown status tier: {value}") from exc


_TIER_SEVERITY = {
    StatusTier.HEALTHY: 0,
    StatusTier.CAUTION: 1,
    StatusTier.WARNING: 2,
    StatusTier.CRITICAL: 3,
}


@dataclass(frozen=True)
class BudgetSnapshot:
    """Monetary state of one budget for one month, produced upstream."""

    budget_id: int
    category_name: str
    monthly_limit: Decimal
    consumption: Decimal
    thresholds: tuple[Decimal, ...]
    reference_month: str
    recipient_id: int
    recipient_address: str
    recipient_name: Optional[str] = None
    # False when the recipient turned budget e-mails off.
    notifications_enabled: bool = True


@dataclass(frozen=True)
class ThresholdStatus:
    """Result of evaluating a snapshot; never persisted."""

    tier: StatusTier
    usage_ratio: Optional[float]
    triggered_threshold: Optional[Decimal]


@dataclass(frozen=True)
class DispatchRecord:
    """Persisted proof that an alert was reserved for a recipient."""

    event_id: str
    recipient: str
    cycle_key: str
    content_hash: str
    context_snapshot: dict[str, Any]
    sent_at: datetime


@dataclass(frozen=True)
class ReservationResult:
    reserved: bool
    record: Optional[DispatchRecord] = None


@dataclass(frozen=True)
class TokenPayload:
    """Claims carried by an access token (epoch seconds)."""

    budget_id: Optional[int]
    recipient_id: Optional[int]
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class MintedToken:
    token: str
    issued_at: datetime
    expires_at: datetime
    payload: TokenPayload


class TokenFailure(str, Enum):
    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad-signature"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenVerification:
    valid: bool
    payload: Optional[TokenPayload] = None
    reason: Optional[TokenFailure] = None


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class RenderContext:
    """Everything a template needs to render one budget alert."""

    app_name: str
    budget_id: int
    category_name: str
    reference_month: str
    month_label: str
    recipient_id: int
    recipient_address: str
    greeting_name: str
    tier: StatusTier
    tier_label: str
    tier_description: str
    subject_lead: str
    text_color: str
    bar_color: str
    badge_background: str
    monthly_limit_label: str
    consumption_label: str
    remaining: Decimal
    remaining_label: str
    usage_percent: Optional[float]
    usage_label: str
    triggered_threshold: Optional[Decimal]
    triggered_threshold_label: Optional[str]
    access_url: str
    token_issued_at: datetime
    token_expires_at: datetime
    insights: tuple[str, ...]
    preview_text: str
    canonical_payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchJob:
    """One rendered message waiting to be delivered."""

    recipient: str
    message: RenderedMessage
    event_id: str = ""
    content_hash: str = ""


class DispatchOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DispatchResult:
    job: DispatchJob
    outcome: DispatchOutcome
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class DispatchFailure:
    job: DispatchJob
    error: BaseException


@dataclass
class DispatchReport:
    """Batch outcome; produced even when some sends failed."""

    sent: int
    total: int
    errors: list[DispatchFailure] = field(default_factory=list)
    results: list[DispatchResult] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors and self.sent == self.total


@dataclass
class AlertRunReport:
    """Counters for one pass of the alert processor."""

    evaluated: int = 0
    alertable: int = 0
    skipped_duplicate: int = 0
    skipped_cooldown: int = 0
    skipped_no_recipient: int = 0
    skipped_opted_out: int = 0
    failed_prepare: int = 0
    released: int = 0
    dispatched: DispatchReport = field(default_factory=lambda: DispatchReport(sent=0, total=0))
