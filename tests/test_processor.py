from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from budgetwatch.adapters.notification_formatting import render_budget_alert
from budgetwatch.adapters.sqlite_storage import SQLiteStorage
from budgetwatch.core.config import AlertConfig, LinkConfig
from budgetwatch.core.dispatcher import RateLimiter
from budgetwatch.core.ledger import DispatchLedger
from budgetwatch.core.models import BudgetSnapshot, RenderContext, StatusTier
from budgetwatch.core.processor import AlertProcessor, is_alertable
from budgetwatch.core.thresholds import evaluate
from budgetwatch.core.tokens import verify

NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)
SECRET = "processor-secret"


class FakeSender:
    def __init__(self, fail_for: Optional[set[str]] = None) -> None:
        self.fail_for = fail_for or set()
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, recipient_address: str, subject: str, html: str, text: str) -> None:
        if recipient_address in self.fail_for:
            raise RuntimeError("delivery failed")
        self.sent.append((recipient_address, subject, text))


def _snapshot(budget_id: int = 1, consumption: str = "950", **overrides) -> BudgetSnapshot:
    values = dict(
        budget_id=budget_id,
        category_name="Travel",
        monthly_limit=Decimal("1000"),
        consumption=Decimal(consumption),
        thresholds=(Decimal("500"), Decimal("900")),
        reference_month="2024-05",
        recipient_id=7,
        recipient_address="Ana@Example.com",
        recipient_name="Ana",
    )
    values.update(overrides)
    return BudgetSnapshot(**values)


def _processor(tmp_path, sender: FakeSender, **config_overrides) -> tuple[AlertProcessor, SQLiteStorage]:
    storage = SQLiteStorage(str(tmp_path / "alerts.db"))
    storage.init_db()
    config = AlertConfig(links=LinkConfig(secret=SECRET, base_url="https://app.example.com"), **config_overrides)
    processor = AlertProcessor(
        ledger=DispatchLedger(storage, clock=lambda: NOW),
        sender=sender,
        render=render_budget_alert,
        config=config,
        limiter=RateLimiter(100, 1000),
        clock=lambda: NOW,
    )
    return processor, storage


def test_is_alertable_uses_minimum_tier() -> None:
    warning = evaluate(1000, 900, [])
    caution = evaluate(1000, 600, [])
    assert is_alertable(warning, StatusTier.WARNING) is True
    assert is_alertable(caution, StatusTier.WARNING) is False
    assert is_alertable(caution, StatusTier.CAUTION) is True


def test_alert_is_sent_with_a_verifiable_link(tmp_path) -> None:
    sender = FakeSender()
    processor, storage = _processor(tmp_path, sender)

    report = asyncio.run(processor.process([_snapshot(), _snapshot(budget_id=2, consumption="100")]))

    assert report.evaluated == 2
    assert report.alertable == 1
    assert report.dispatched.sent == 1
    assert len(sender.sent) == 1
    recipient, subject, text = sender.sent[0]
    assert recipient == "Ana@Example.com"
    assert subject == "Budget alert • Travel - May 2024 (95% used) | Budget Alerts"

    link_line = next(line for line in text.splitlines() if line.startswith("https://"))
    token = link_line.split("budgetToken=", 1)[1]
    result = verify(token, SECRET, now=NOW)
    assert result.valid is True
    assert result.payload is not None
    assert result.payload.budget_id == 1
    assert result.payload.recipient_id == 7

    records = storage.list_records()
    assert len(records) == 1
    assert records[0].event_id == "budget:1"
    assert records[0].recipient == "ana@example.com"
    assert records[0].context_snapshot["contextType"] == "budget-threshold"


def test_second_run_sends_nothing(tmp_path) -> None:
    sender = FakeSender()
    processor, _ = _processor(tmp_path, sender)

    asyncio.run(processor.process([_snapshot()]))
    report = asyncio.run(processor.process([_snapshot()]))

    assert len(sender.sent) == 1
    assert report.dispatched.total == 0
    assert report.skipped_cooldown == 1


def test_content_mode_relies_on_unique_triple(tmp_path) -> None:
    sender = FakeSender()
    processor, _ = _processor(tmp_path, sender, cooldown="content")

    asyncio.run(processor.process([_snapshot()]))
    repeat = asyncio.run(processor.process([_snapshot()]))
    changed = asyncio.run(processor.process([_snapshot(consumption="960")]))

    assert repeat.skipped_duplicate == 1
    assert changed.dispatched.sent == 1
    assert len(sender.sent) == 2


def test_cycle_mode_suppresses_changed_amount_in_same_cycle(tmp_path) -> None:
    sender = FakeSender()
    processor, _ = _processor(tmp_path, sender)

    asyncio.run(processor.process([_snapshot()]))
    report = asyncio.run(processor.process([_snapshot(consumption="960")]))

    assert report.skipped_cooldown == 1
    assert len(sender.sent) == 1


def test_escalation_to_critical_is_not_suppressed(tmp_path) -> None:
    sender = FakeSender()
    processor, _ = _processor(tmp_path, sender)

    asyncio.run(processor.process([_snapshot()]))
    report = asyncio.run(processor.process([_snapshot(consumption="1010")]))

    assert report.dispatched.sent == 1
    assert sender.sent[-1][1].startswith("Limit exceeded • Travel")


def test_failed_send_releases_reservation_for_retry(tmp_path) -> None:
    failing = FakeSender(fail_for={"Ana@Example.com"})
    processor, storage = _processor(tmp_path, failing)

    report = asyncio.run(processor.process([_snapshot()]))

    assert report.dispatched.failed == 1
    assert report.released == 1
    assert storage.list_records() == []

    healthy = FakeSender()
    retry, _ = _processor(tmp_path, healthy)
    retry_report = asyncio.run(retry.process([_snapshot()]))
    assert retry_report.dispatched.sent == 1
    assert len(healthy.sent) == 1


def test_failed_send_is_kept_when_release_disabled(tmp_path) -> None:
    failing = FakeSender(fail_for={"Ana@Example.com"})
    processor, storage = _processor(tmp_path, failing, release_on_failure=False)

    report = asyncio.run(processor.process([_snapshot()]))

    assert report.released == 0
    assert len(storage.list_records()) == 1


def test_snapshot_without_recipient_is_skipped(tmp_path) -> None:
    sender = FakeSender()
    processor, storage = _processor(tmp_path, sender)

    report = asyncio.run(processor.process([_snapshot(recipient_address="   ")]))

    assert report.alertable == 1
    assert report.skipped_no_recipient == 1
    assert sender.sent == []
    assert storage.list_records() == []


def test_opted_out_recipient_is_skipped(tmp_path) -> None:
    sender = FakeSender()
    processor, storage = _processor(tmp_path, sender)

    report = asyncio.run(processor.process([_snapshot(notifications_enabled=False), _snapshot(budget_id=2)]))

    assert report.alertable == 2
    assert report.skipped_opted_out == 1
    assert report.dispatched.sent == 1
    assert [record.event_id for record in storage.list_records()] == ["budget:2"]


def _render_failing_for(budget_id: int):
    def render(context: RenderContext):
        if context.budget_id == budget_id:
            raise RuntimeError("template error")
        return render_budget_alert(context)

    return render


def test_render_failure_releases_its_reservation(tmp_path, caplog) -> None:
    storage = SQLiteStorage(str(tmp_path / "alerts.db"))
    storage.init_db()
    processor = AlertProcessor(
        ledger=DispatchLedger(storage),
        sender=FakeSender(),
        render=_render_failing_for(1),
        config=AlertConfig(links=LinkConfig(secret=SECRET)),
    )

    with caplog.at_level(logging.ERROR, logger="budgetwatch.core.processor"):
        report = asyncio.run(processor.process([_snapshot()]))

    assert report.failed_prepare == 1
    assert report.dispatched.total == 0
    assert storage.list_records() == []
    assert "Failed to prepare alert for budget 1" in caplog.text


def test_failure_in_one_snapshot_does_not_strand_the_others(tmp_path) -> None:
    storage = SQLiteStorage(str(tmp_path / "alerts.db"))
    storage.init_db()
    config = AlertConfig(links=LinkConfig(secret=SECRET))
    batch = [_snapshot(budget_id=1), _snapshot(budget_id=2), _snapshot(budget_id=3)]

    sender = FakeSender()
    processor = AlertProcessor(
        ledger=DispatchLedger(storage, clock=lambda: NOW),
        sender=sender,
        render=_render_failing_for(2),
        config=config,
        limiter=RateLimiter(100, 1000),
        clock=lambda: NOW,
    )
    report = asyncio.run(processor.process(batch))

    assert report.evaluated == 3
    assert report.failed_prepare == 1
    assert report.dispatched.sent == 2
    assert len(sender.sent) == 2
    assert sorted(record.event_id for record in storage.list_records()) == ["budget:1", "budget:3"]

    # A later run with a working renderer delivers only the one that failed.
    retry_sender = FakeSender()
    retry = AlertProcessor(
        ledger=DispatchLedger(storage, clock=lambda: NOW),
        sender=retry_sender,
        render=render_budget_alert,
        config=config,
        limiter=RateLimiter(100, 1000),
        clock=lambda: NOW,
    )
    retry_report = asyncio.run(retry.process(batch))

    assert retry_report.skipped_cooldown == 2
    assert retry_report.dispatched.sent == 1
    assert len(retry_sender.sent) == 1
    assert sorted(record.event_id for record in storage.list_records()) == ["budget:1", "budget:2", "budget:3"]
