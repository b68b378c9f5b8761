"""Runtime configuration for budgetwatch.

Structured, non-secret options (alert policy, links, rate limit, delivery,
database, logging) live in a single JSON file for quick edits without
touching Python. Secrets come from the environment or a ``.env`` file.
Environment values win over the JSON file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from budgetwatch.adapters.smtp_sender import SMTPConfig
from budgetwatch.core.config import AlertConfig, DispatchConfig, LinkConfig, RateLimitConfig
from budgetwatch.core.errors import ConfigurationError

DEFAULT_CONFIG_FILE = "config.json"
DEFAULT_DB_PATH = "budgetwatch.db"

DELIVERY_METHODS = ("email", "telegram", "log")

# Checked in order; the first non-empty value is used.
SECRET_ENV_VARS = ("BUDGET_LINK_SECRET", "EMAIL_LINK_SECRET", "SESSION_SECRET", "APP_SECRET")
TTL_ENV_VARS = ("BUDGET_LINK_TTL", "BUDGET_TOKEN_TTL")
BASE_URL_ENV_VARS = ("APP_BASE_URL", "APP_URL", "PUBLIC_APP_URL")

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AlertSettings:
    """Everything the app layer needs to wire the processor and adapters."""

    alert_config: AlertConfig = field(default_factory=AlertConfig)
    delivery_method: str = "email"
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    bot_token: Optional[str] = None
    bot_chat_id: Optional[str] = None
    db_path: str = DEFAULT_DB_PATH
    logging: dict = field(default_factory=dict)
    app_env: str = "development"
    config_path: Optional[str] = None

    @property
    def uses_placeholder_secret(self) -> bool:
        return self.alert_config.links.secret is None

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    def redaction_values(self) -> list[str]:
        """Secrets that must never reach a log line, longest first."""

        values = {self.alert_config.links.secret, self.smtp.password, self.bot_token}
        return sorted((value for value in values if value), key=len, reverse=True)

    def validate_secret(self) -> None:
        """Production must never sign links with the placeholder secret."""

        if self.is_production and self.uses_placeholder_secret:
            raise ConfigurationError(
                f"A link secret is required in production; set one of {', '.join(SECRET_ENV_VARS)}"
            )

    def validate(self) -> None:
        self.validate_secret()
        if self.delivery_method not in DELIVERY_METHODS:
            raise ConfigurationError(
                f"delivery.method must be one of {', '.join(DELIVERY_METHODS)}, got {self.delivery_method!r}"
            )
        if self.delivery_method == "telegram" and not self.bot_token:
            raise ConfigurationError("BOT_API is required when delivery.method=telegram")


def _read_json(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a JSON object: {path}")
    return data


def _first_env(environ: Mapping[str, str], names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _build_alert_config(config: dict, environ: Mapping[str, str]) -> AlertConfig:
    alerts = config.get("alerts", {})
    links = config.get("links", {})
    rate_limit = config.get("rate_limit", {})
    dispatch = config.get("dispatch", {})

    ttl: Any = _first_env(environ, TTL_ENV_VARS) or links.get("ttl_seconds")
    link_config = LinkConfig(
        secret=_first_env(environ, SECRET_ENV_VARS),
        default_ttl_seconds=ttl if ttl is not None else LinkConfig.default_ttl_seconds,
        base_url=_first_env(environ, BASE_URL_ENV_VARS) or links.get("base_url"),
        route_path=_first_env(environ, ("BUDGETS_PAGE_PATH",)) or links.get("route_path") or LinkConfig.route_path,
    )
    dispatch_config = DispatchConfig(
        rate_limit=RateLimitConfig(
            max_per_interval=rate_limit.get("max_per_interval", RateLimitConfig.max_per_interval),
            interval_ms=rate_limit.get("interval_ms", RateLimitConfig.interval_ms),
        ),
        concurrency=dispatch.get("concurrency", DispatchConfig.concurrency),
        stop_on_error=_as_bool(dispatch.get("stop_on_error", False)),
    )
    return AlertConfig(
        links=link_config,
        dispatch=dispatch_config,
        min_alert_tier=alerts.get("min_tier", AlertConfig.min_alert_tier),
        cooldown=alerts.get("cooldown", AlertConfig.cooldown),
        release_on_failure=_as_bool(alerts.get("release_on_failure", True)),
        currency_symbol=alerts.get("currency_symbol", AlertConfig.currency_symbol),
        app_name=alerts.get("app_name", AlertConfig.app_name),
    )


def _build_smtp_config(delivery: dict, environ: Mapping[str, str]) -> SMTPConfig:
    smtp = delivery.get("smtp", {})
    return SMTPConfig(
        host=smtp.get("host", SMTPConfig.host),
        port=int(smtp.get("port", SMTPConfig.port)),
        username=smtp.get("username"),
        password=_first_env(environ, ("SMTP_PASSWORD",)),
        use_tls=_as_bool(smtp.get("use_tls", True)),
        from_address=smtp.get("from_address", SMTPConfig.from_address),
        from_name=smtp.get("from_name", SMTPConfig.from_name),
        timeout=float(smtp.get("timeout", SMTPConfig.timeout)),
        disabled=_as_bool(environ.get("EMAIL_DISABLED", smtp.get("disabled", False))),
    )


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AlertSettings:
    """Load config.json plus environment into an AlertSettings.

    When ``environ`` is omitted the process environment is used after
    loading ``.env``. A missing default config file yields defaults; a
    missing explicitly requested file raises FileNotFoundError.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ

    explicit_path = config_path or _first_env(environ, ("BUDGETWATCH_CONFIG",))
    path = explicit_path or os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
    if os.path.exists(path):
        config = _read_json(path)
    elif explicit_path:
        raise FileNotFoundError(f"Config file not found: {path}")
    else:
        config = {}
        path = None

    delivery = config.get("delivery", {})
    bot_chat_id = delivery.get("bot_chat_id")
    return AlertSettings(
        alert_config=_build_alert_config(config, environ),
        delivery_method=str(delivery.get("method", "email")).strip().lower(),
        smtp=_build_smtp_config(delivery, environ),
        bot_token=_first_env(environ, ("BOT_API",)),
        bot_chat_id=str(bot_chat_id) if bot_chat_id else None,
        db_path=config.get("database", {}).get("path", DEFAULT_DB_PATH),
        logging=config.get("logging", {}),
        app_env=_first_env(environ, ("APP_ENV",)) or "development",
        config_path=path,
    )
