"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely. Every
recognised option is a field here and defaults are applied at construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from budgetwatch.core.errors import ConfigurationError
from budgetwatch.core.links import DEFAULT_ROUTE_PATH, normalize_base_url, normalize_route_path
from budgetwatch.core.models import StatusTier

MIN_TOKEN_TTL_SECONDS = 300
DEFAULT_TOKEN_TTL_SECONDS = 60 * 60 * 24

COOLDOWN_MODES = ("cycle", "content")


def _require_positive_int(name: str, value: object, minimum: int = 1) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc
    if number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number


@dataclass(frozen=True)
class RateLimitConfig:
    """Global throughput cap for one dispatch batch."""

    max_per_interval: int = 90
    interval_ms: int = 60_000

    def __post_init__(self) -> None:
        object.__setattr__(self, "max_per_interval", _require_positive_int("max_per_interval", self.max_per_interval))
        object.__setattr__(self, "interval_ms", _require_positive_int("interval_ms", self.interval_ms))


@dataclass(frozen=True)
class DispatchConfig:
    """Worker pool and failure policy for the bulk dispatcher."""

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    concurrency: int = 2
    stop_on_error: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "concurrency", _require_positive_int("concurrency", self.concurrency))


@dataclass(frozen=True)
class LinkConfig:
    """Signing secret, token lifetime and deep-link location."""

    secret: Optional[str] = None
    default_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS
    base_url: Optional[str] = None
    route_path: str = DEFAULT_ROUTE_PATH

    def __post_init__(self) -> None:
        secret = self.secret.strip() if isinstance(self.secret, str) else None
        object.__setattr__(self, "secret", secret or None)
        ttl = _require_positive_int("default_ttl_seconds", self.default_ttl_seconds)
        # Short lifetimes are raised to the floor rather than rejected.
        object.__setattr__(self, "default_ttl_seconds", max(MIN_TOKEN_TTL_SECONDS, ttl))
        object.__setattr__(self, "base_url", normalize_base_url(self.base_url))
        object.__setattr__(self, "route_path", normalize_route_path(self.route_path))


@dataclass(frozen=True)
class AlertConfig:
    """Settings for the alert processor as a whole."""

    links: LinkConfig = field(default_factory=LinkConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    min_alert_tier: StatusTier = StatusTier.WARNING
    cooldown: str = "cycle"
    release_on_failure: bool = True
    currency_symbol: str = "$"
    app_name: str = "Budget Alerts"

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "min_alert_tier", StatusTier.parse(self.min_alert_tier))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if self.cooldown not in COOLDOWN_MODES:
            raise ConfigurationError(f"cooldown must be one of {', '.join(COOLDOWN_MODES)}, got {self.cooldown!r}")
