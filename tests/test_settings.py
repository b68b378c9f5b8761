from __future__ import annotations

import json

import pytest

from budgetwatch.core.errors import ConfigurationError
from budgetwatch.core.models import StatusTier
from budgetwatch.settings import load_settings


def _write_config(tmp_path, data: dict) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_defaults_without_config_file(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={})

    config = settings.alert_config
    assert settings.config_path is None
    assert config.dispatch.rate_limit.max_per_interval == 90
    assert config.dispatch.rate_limit.interval_ms == 60_000
    assert config.dispatch.concurrency == 2
    assert config.dispatch.stop_on_error is False
    assert config.links.default_ttl_seconds == 86_400
    assert config.links.route_path == "/finance/budgets"
    assert config.min_alert_tier is StatusTier.WARNING
    assert settings.uses_placeholder_secret is True
    assert settings.delivery_method == "email"


def test_missing_explicit_config_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "absent.json"), environ={})


def test_json_values_are_applied(tmp_path) -> None:
    path = _write_config(
        tmp_path,
        {
            "alerts": {"min_tier": "caution", "cooldown": "content", "currency_symbol": "R$"},
            "links": {"ttl_seconds": 60, "base_url": "https://app.example.com/", "route_path": "budgets//list"},
            "rate_limit": {"max_per_interval": 10, "interval_ms": 1000},
            "dispatch": {"concurrency": 4, "stop_on_error": True},
            "delivery": {"method": "Telegram", "bot_chat_id": 12345, "smtp": {"host": "mail.example.com", "port": 2525}},
            "database": {"path": "data/alerts.db"},
        },
    )
    settings = load_settings(path, environ={"BOT_API": "123:abc"})
    config = settings.alert_config

    assert config.min_alert_tier is StatusTier.CAUTION
    assert config.cooldown == "content"
    assert config.currency_symbol == "R$"
    assert config.links.default_ttl_seconds == 300
    assert config.links.base_url == "https://app.example.com"
    assert config.links.route_path == "/budgets/list"
    assert config.dispatch.rate_limit.max_per_interval == 10
    assert config.dispatch.concurrency == 4
    assert config.dispatch.stop_on_error is True
    assert settings.delivery_method == "telegram"
    assert settings.bot_chat_id == "12345"
    assert settings.smtp.host == "mail.example.com"
    assert settings.smtp.port == 2525
    assert settings.db_path == "data/alerts.db"
    settings.validate()


def test_environment_wins_over_json(tmp_path) -> None:
    path = _write_config(tmp_path, {"links": {"ttl_seconds": 3600, "base_url": "https://json.example.com"}})
    settings = load_settings(
        path,
        environ={
            "BUDGET_LINK_SECRET": "  ",
            "SESSION_SECRET": "session-secret",
            "BUDGET_TOKEN_TTL": "7200",
            "PUBLIC_APP_URL": "https://env.example.com",
            "BUDGETS_PAGE_PATH": "money/budgets",
            "SMTP_PASSWORD": "smtp-pass",
            "EMAIL_DISABLED": "true",
        },
    )
    links = settings.alert_config.links

    assert links.secret == "session-secret"
    assert links.default_ttl_seconds == 7200
    assert links.base_url == "https://env.example.com"
    assert links.route_path == "/money/budgets"
    assert settings.smtp.password == "smtp-pass"
    assert settings.smtp.disabled is True
    assert settings.redaction_values() == ["session-secret", "smtp-pass"]


def test_config_path_from_environment(tmp_path) -> None:
    path = _write_config(tmp_path, {"alerts": {"app_name": "Family Budget"}})
    settings = load_settings(environ={"BUDGETWATCH_CONFIG": path})
    assert settings.alert_config.app_name == "Family Budget"
    assert settings.config_path == path


def test_production_refuses_placeholder_secret(tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    settings = load_settings(environ={"APP_ENV": "production"})

    assert settings.uses_placeholder_secret is True
    with pytest.raises(ConfigurationError):
        settings.validate_secret()
    with pytest.raises(ConfigurationError):
        settings.validate()

    configured = load_settings(environ={"APP_ENV": "production", "APP_SECRET": "real-secret"})
    configured.validate()


def test_invalid_values_raise_configuration_error(tmp_path) -> None:
    for data in (
        {"rate_limit": {"max_per_interval": 0}},
        {"dispatch": {"concurrency": "many"}},
        {"alerts": {"min_tier": "panic"}},
        {"alerts": {"cooldown": "weekly"}},
    ):
        path = _write_config(tmp_path, data)
        with pytest.raises(ConfigurationError):
            load_settings(path, environ={})


def test_delivery_validation(tmp_path) -> None:
    path = _write_config(tmp_path, {"delivery": {"method": "pigeon"}})
    with pytest.raises(ConfigurationError):
        load_settings(path, environ={}).validate()

    path = _write_config(tmp_path, {"delivery": {"method": "telegram"}})
    with pytest.raises(ConfigurationError, match="BOT_API"):
        load_settings(path, environ={}).validate()
