"""Core alert processing pipeline.

This module is integration-agnostic. It only relies on ports for storage,
rendering and delivery, enabling other channels or stores without changes
here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from budgetwatch.core.composer import build_canonical_payload, compose
from budgetwatch.core.config import AlertConfig
from budgetwatch.core.dedup import build_cycle_key, build_event_id, fingerprint, normalize_recipient
from budgetwatch.core.dispatcher import BulkDispatcher, RateLimiter
from budgetwatch.core.ledger import DispatchLedger
from budgetwatch.core.models import (
    AlertRunReport,
    BudgetSnapshot,
    DispatchJob,
    StatusTier,
    ThresholdStatus,
)
from budgetwatch.core.ports import RenderCapability, SenderPort
from budgetwatch.core.thresholds import evaluate
from budgetwatch.core.tokens import AccessTokenCodec

LOGGER = logging.getLogger(__name__)

CONTEXT_TYPE = "budget-threshold"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_alertable(status: ThresholdStatus, min_tier: StatusTier) -> bool:
    return status.tier.severity >= min_tier.severity


class AlertProcessor:
    """Orchestrates evaluation, dedup, composition and delivery."""

    def __init__(
        self,
        ledger: DispatchLedger,
        sender: SenderPort,
        render: RenderCapability,
        config: Optional[AlertConfig] = None,
        limiter: Optional[RateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._ledger = ledger
        self._sender = sender
        self._render = render
        self._config = config or AlertConfig()
        self._codec = AccessTokenCodec(self._config.links)
        self._dispatcher = BulkDispatcher(self._config.dispatch, limiter=limiter)
        self._clock = clock or _utcnow

    def prepare(self, snapshot: BudgetSnapshot, report: AlertRunReport, now: datetime) -> Optional[DispatchJob]:
        """Evaluate one snapshot and reserve its alert; return the job to send."""

        report.evaluated += 1
        status = evaluate(snapshot.monthly_limit, snapshot.consumption, snapshot.thresholds)
        if not is_alertable(status, self._config.min_alert_tier):
            return None
        report.alertable += 1

        if not snapshot.notifications_enabled:
            LOGGER.info(
                "Recipient %s opted out of budget alerts; skipping budget %s",
                snapshot.recipient_id,
                snapshot.budget_id,
            )
            report.skipped_opted_out += 1
            return None

        recipient = normalize_recipient(snapshot.recipient_address or "")
        if not recipient:
            LOGGER.info("Budget %s has no recipient address; skipping", snapshot.budget_id)
            report.skipped_no_recipient += 1
            return None

        event_id = build_event_id(snapshot.budget_id)
        cycle_key = build_cycle_key(status.tier, status.triggered_threshold, snapshot.reference_month)
        canonical_payload = build_canonical_payload(snapshot, status)
        content_hash = fingerprint(event_id, recipient, canonical_payload)

        if self._config.cooldown == "cycle" and self._ledger.has_fired_in_cycle(event_id, cycle_key):
            LOGGER.info("Cooldown skip for %s (%s)", event_id, cycle_key)
            report.skipped_cooldown += 1
            return None

        # Reserve-then-send: the reservation is the at-most-once gate.
        reservation = self._ledger.try_reserve(
            event_id,
            recipient,
            content_hash,
            cycle_key,
            {"contextType": CONTEXT_TYPE, "cycleKey": cycle_key, **canonical_payload},
        )
        if not reservation.reserved:
            report.skipped_duplicate += 1
            return None

        try:
            token = self._codec.mint(snapshot.budget_id, snapshot.recipient_id, now=now)
            message = self._render(compose(snapshot, status, token, self._config))
        except Exception:
            self._ledger.release(event_id, recipient, content_hash)
            raise

        return DispatchJob(
            recipient=snapshot.recipient_address.strip(),
            message=message,
            event_id=event_id,
            content_hash=content_hash,
        )

    async def process(self, snapshots: Iterable[BudgetSnapshot], now: Optional[datetime] = None) -> AlertRunReport:
        """Run the whole pipeline for a batch of snapshots."""

        now = now or self._clock()
        report = AlertRunReport()
        jobs: list[DispatchJob] = []
        for snapshot in snapshots:
            # One bad snapshot must not hold back the jobs already reserved.
            try:
                job = self.prepare(snapshot, report, now)
            except Exception:
                LOGGER.exception("Failed to prepare alert for budget %s", snapshot.budget_id)
                report.failed_prepare += 1
                continue
            if job is not None:
                jobs.append(job)

        async def send(job: DispatchJob) -> None:
            await self._sender.send(job.recipient, job.message.subject, job.message.html, job.message.text)

        report.dispatched = await self._dispatcher.dispatch(jobs, send)

        # Failed and never-attempted jobs give their reservation back so the
        # next run can retry them.
        if self._config.release_on_failure:
            delivered = {id(result.job) for result in report.dispatched.results if result.error is None}
            for job in jobs:
                if id(job) in delivered:
                    continue
                if self._ledger.release(job.event_id, normalize_recipient(job.recipient), job.content_hash):
                    report.released += 1

        LOGGER.info(
            "Alert run complete: evaluated=%s, alertable=%s, sent=%s, failed=%s, "
            "failed_prepare=%s, duplicates=%s, cooldown=%s, opted_out=%s",
            report.evaluated,
            report.alertable,
            report.dispatched.sent,
            report.dispatched.failed,
            report.failed_prepare,
            report.skipped_duplicate,
            report.skipped_cooldown,
            report.skipped_opted_out,
        )
        return report
