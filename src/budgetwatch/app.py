"""Application entry point for the budget alert dispatcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from budgetwatch.adapters.log_sender import LogSender
from budgetwatch.adapters.notification_formatting import render_budget_alert
from budgetwatch.adapters.smtp_sender import SMTPSender
from budgetwatch.adapters.snapshot_loader import load_snapshots
from budgetwatch.adapters.sqlite_storage import SQLiteStorage
from budgetwatch.adapters.telegram_bot_sender import TelegramBotSender
from budgetwatch.core.composer import format_percentage
from budgetwatch.core.errors import ConfigurationError
from budgetwatch.core.ledger import DispatchLedger
from budgetwatch.core.links import build_access_link
from budgetwatch.core.ports import SenderPort
from budgetwatch.core.processor import AlertProcessor
from budgetwatch.core.thresholds import evaluate
from budgetwatch.core.tokens import AccessTokenCodec
from budgetwatch.settings import AlertSettings, load_settings

NAME = "BUDGETWATCH"
FONT = "tarty-1"

INVALID_LINK_MESSAGE = "link expired or invalid"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(settings: AlertSettings) -> list[str]:
    # Configured secrets are always masked; extra env var names may be listed
    # under logging.redact.patterns.
    values = set(settings.redaction_values())
    redact_cfg = settings.logging.get("redact", {}) if settings.logging else {}
    if redact_cfg.get("enabled", False):
        for name in redact_cfg.get("patterns", []):
            value = os.getenv(name)
            if value:
                values.add(value)
    return sorted(values, key=len, reverse=True)


def _configure_logging(settings: AlertSettings) -> None:
    config = settings.logging or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(settings), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/budgetwatch.log")
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_sender(settings: AlertSettings, dry_run: bool) -> SenderPort:
    # Select the delivery adapter from configuration so the processor stays
    # independent from transport details.
    if dry_run or settings.delivery_method == "log":
        return LogSender()
    if settings.delivery_method == "telegram":
        return TelegramBotSender(bot_token=settings.bot_token or "", chat_id=settings.bot_chat_id)
    return SMTPSender(settings.smtp)


def _open_storage(settings: AlertSettings) -> SQLiteStorage:
    directory = os.path.dirname(settings.db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    storage = SQLiteStorage(settings.db_path)
    storage.init_db()
    return storage


def _run(settings: AlertSettings, snapshots_path: str, dry_run: bool) -> int:
    _print_banner()
    settings.validate()
    logger = logging.getLogger(__name__)

    storage = _open_storage(settings)
    sender = _build_sender(settings, dry_run)
    logger.info("Selected delivery method - %s", "log" if dry_run else settings.delivery_method)

    snapshots = load_snapshots(snapshots_path)
    logger.info("%s snapshots are loaded", len(snapshots))

    processor = AlertProcessor(
        ledger=DispatchLedger(storage),
        sender=sender,
        render=render_budget_alert,
        config=settings.alert_config,
    )
    report = asyncio.run(processor.process(snapshots))
    dispatched = report.dispatched
    print(
        f"evaluated={report.evaluated} alertable={report.alertable} "
        f"sent={dispatched.sent}/{dispatched.total} failed={dispatched.failed} "
        f"duplicates={report.skipped_duplicate} cooldown={report.skipped_cooldown} "
        f"released={report.released} opted_out={report.skipped_opted_out} "
        f"failed_prepare={report.failed_prepare}"
    )
    for failure in dispatched.errors:
        print(f"failed: {failure.job.recipient}: {failure.error}")
    return 0 if dispatched.ok and not report.failed_prepare else 1


def _evaluate(limit: str, consumption: str, thresholds: list[str]) -> int:
    status = evaluate(limit, consumption, thresholds)
    triggered = status.triggered_threshold
    print(
        f"tier={status.tier.value} usage={format_percentage(status.usage_ratio)} "
        f"triggered_threshold={triggered if triggered is not None else 'none'}"
    )
    return 0


def _mint_token(settings: AlertSettings, budget_id: int, recipient_id: int, ttl: Optional[int]) -> int:
    settings.validate_secret()
    links = settings.alert_config.links
    minted = AccessTokenCodec(links).mint(budget_id, recipient_id, ttl_seconds=ttl)
    print(minted.token)
    print(build_access_link(links, budget_id, minted.token))
    print(f"expires_at={minted.expires_at.isoformat()}")
    return 0


def _verify_token(settings: AlertSettings, token: str) -> int:
    settings.validate_secret()
    result = AccessTokenCodec(settings.alert_config.links).verify(token)
    if not result.valid or result.payload is None:
        # Callers only learn that the link is unusable; the reason stays in the log.
        logging.getLogger(__name__).info("Token rejected: %s", result.reason.value if result.reason else "unknown")
        print(INVALID_LINK_MESSAGE)
        return 1
    payload = result.payload
    print(f"budget_id={payload.budget_id} recipient_id={payload.recipient_id} expires_at={payload.expires_at}")
    return 0


def _history(settings: AlertSettings, event_id: Optional[str], limit: int) -> int:
    storage = _open_storage(settings)
    records = storage.list_records(event_id=event_id, limit=limit)
    if not records:
        print("No dispatch records.")
        return 0
    for record in records:
        print(f"{record.sent_at.isoformat()} | {record.event_id} | {record.recipient} | {record.cycle_key}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="budgetwatch")
    parser.add_argument("--config", help="Path to config.json (defaults to ./config.json)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Evaluate snapshots and send due alerts")
    run.add_argument("--snapshots", required=True, help="JSON file with budget snapshots")
    run.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending them")

    evaluate_cmd = subparsers.add_parser("evaluate", help="Classify one budget without sending anything")
    evaluate_cmd.add_argument("--limit", required=True)
    evaluate_cmd.add_argument("--consumption", required=True)
    evaluate_cmd.add_argument("--threshold", action="append", default=[], help="Absolute threshold; repeatable")

    mint_cmd = subparsers.add_parser("mint-token", help="Issue a signed budget access link")
    mint_cmd.add_argument("--budget-id", type=int, required=True)
    mint_cmd.add_argument("--recipient-id", type=int, required=True)
    mint_cmd.add_argument("--ttl", type=int, default=None, help="Lifetime in seconds")

    verify_cmd = subparsers.add_parser("verify-token", help="Check a budget access token")
    verify_cmd.add_argument("token")

    history_cmd = subparsers.add_parser("history", help="Show recent dispatch records")
    history_cmd.add_argument("--event-id", default=None, help="e.g. budget:42")
    history_cmd.add_argument("--limit", type=int, default=20)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "evaluate":
        return _evaluate(args.limit, args.consumption, args.threshold)

    try:
        settings = load_settings(args.config)
        _configure_logging(settings)
        if args.command == "run":
            return _run(settings, args.snapshots, args.dry_run)
        if args.command == "mint-token":
            return _mint_token(settings, args.budget_id, args.recipient_id, args.ttl)
        if args.command == "verify-token":
            return _verify_token(settings, args.token)
        return _history(settings, args.event_id, args.limit)
    except (ConfigurationError, FileNotFoundError) as exc:
        parser.exit(2, f"budgetwatch: error: {exc}\n")


if __name__ == "__main__":
    raise SystemExit(main())
