"""Dispatch ledger (core domain).

The ledger is the at-most-once gate: a reservation is taken before a message
is sent, and the storage-level unique constraint decides which of several
concurrent reservations wins. There is no check-then-insert
here: a duplicate is detected only by the failed insert.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from budgetwatch.core.errors import UniqueViolation
from budgetwatch.core.models import DispatchRecord, ReservationResult
from budgetwatch.core.ports import LedgerStoragePort

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DispatchLedger:
    """Reserve, release and query dispatch records through a storage port."""

    def __init__(
        self,
        storage: LedgerStoragePort,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._storage = storage
        self._clock = clock or _utcnow

    def try_reserve(
        self,
        event_id: str,
        recipient: str,
        content_hash: str,
        cycle_key: str,
        context_snapshot: Optional[Mapping[str, Any]] = None,
    ) -> ReservationResult:
        """Atomically claim (event_id, recipient, content_hash).

        Returns ``reserved=False`` when the triple already exists; that is an
        expected outcome, not an error.
        """

        record = DispatchRecord(
            event_id=event_id,
            recipient=recipient,
            cycle_key=cycle_key,
            content_hash=content_hash,
            context_snapshot=dict(context_snapshot or {}),
            sent_at=self._clock(),
        )
        try:
            self._storage.insert_dispatch(record)
        except UniqueViolation:
            LOGGER.debug("Duplicate suppressed for %s -> %s (%s)", event_id, recipient, content_hash[:12])
            return ReservationResult(reserved=False)
        return ReservationResult(reserved=True, record=record)

    def release(self, event_id: str, recipient: str, content_hash: str) -> bool:
        """Undo a reservation after a failed send so a later run may retry."""

        removed = self._storage.delete_dispatch(event_id, recipient, content_hash)
        if removed:
            LOGGER.info("Released reservation for %s -> %s", event_id, recipient)
        return removed

    def has_fired_in_cycle(self, event_id: str, cycle_key: str) -> bool:
        return self._storage.exists_in_cycle(event_id, cycle_key)
