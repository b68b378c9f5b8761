from __future__ import annotations

import json
import logging

import pytest

from budgetwatch import app

CLEARED_ENV = (
    "APP_ENV",
    "BUDGET_LINK_SECRET",
    "EMAIL_LINK_SECRET",
    "SESSION_SECRET",
    "APP_SECRET",
    "BUDGETWATCH_CONFIG",
    "BUDGET_LINK_TTL",
    "BUDGET_TOKEN_TTL",
    "APP_BASE_URL",
    "APP_URL",
    "PUBLIC_APP_URL",
    "BUDGETS_PAGE_PATH",
)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    for name in CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BUDGET_LINK_SECRET", "cli-secret")
    return tmp_path


def test_evaluate_command(capsys) -> None:
    code = app.main(["evaluate", "--limit", "1000", "--consumption", "950", "--threshold", "500", "--threshold", "900"])
    assert code == 0
    assert capsys.readouterr().out.strip() == "tier=warning usage=95.0% triggered_threshold=900"


def test_mint_and_verify_round_trip(workspace, capsys) -> None:
    assert app.main(["mint-token", "--budget-id", "42", "--recipient-id", "7", "--ttl", "600"]) == 0
    lines = capsys.readouterr().out.splitlines()
    token = lines[0]
    assert lines[1] == f"/finance/budgets?budgetId=42&budgetToken={token}"

    assert app.main(["verify-token", token]) == 0
    assert capsys.readouterr().out.startswith("budget_id=42 recipient_id=7")


def test_verify_rejects_invalid_token(workspace, capsys) -> None:
    assert app.main(["verify-token", "not-a-token"]) == 1
    assert capsys.readouterr().out.strip() == app.INVALID_LINK_MESSAGE


def test_production_without_secret_exits(workspace, monkeypatch) -> None:
    monkeypatch.delenv("BUDGET_LINK_SECRET")
    monkeypatch.setenv("APP_ENV", "production")
    with pytest.raises(SystemExit) as excinfo:
        app.main(["mint-token", "--budget-id", "1", "--recipient-id", "2"])
    assert excinfo.value.code == 2


def test_dry_run_then_history(workspace, capsys) -> None:
    config_path = workspace / "config.json"
    config_path.write_text(
        json.dumps({"delivery": {"method": "email"}, "database": {"path": str(workspace / "data" / "ledger.db")}}),
        encoding="utf-8",
    )
    snapshots_path = workspace / "snapshots.json"
    snapshots_path.write_text(
        json.dumps(
            [
                {
                    "budgetId": 42,
                    "categoryName": "Travel",
                    "monthlyLimit": 1000,
                    "consumption": 950,
                    "thresholds": [500, 900],
                    "referenceMonth": "2024-05",
                    "recipientId": 7,
                    "recipientAddress": "ana@example.com",
                }
            ]
        ),
        encoding="utf-8",
    )

    assert app.main(["run", "--snapshots", str(snapshots_path), "--dry-run"]) == 0
    assert "sent=1/1" in capsys.readouterr().out

    assert app.main(["run", "--snapshots", str(snapshots_path), "--dry-run"]) == 0
    assert "sent=0/0" in capsys.readouterr().out

    assert app.main(["history", "--event-id", "budget:42"]) == 0
    history = capsys.readouterr().out
    assert "budget:42 | ana@example.com | warning:threshold:900.00:2024-05" in history


def test_redacting_formatter_masks_secrets() -> None:
    formatter = app._RedactingFormatter(["s3cret"], fmt="%(message)s")
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "token s3cret leaked", None, None)
    assert formatter.format(record) == "token *** leaked"
