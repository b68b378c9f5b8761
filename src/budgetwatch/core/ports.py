"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, rendering and delivery
adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Callable, Protocol

from budgetwatch.core.models import DispatchRecord, RenderContext, RenderedMessage


class LedgerStoragePort(Protocol):
    """Storage operations required by the dispatch ledger.

    ``insert_dispatch`` must be atomic and backed by a storage-level unique
    constraint over (event_id, recipient, content_hash); a conflicting write
    raises ``UniqueViolation``.
    """

    def insert_dispatch(self, record: DispatchRecord) -> None:
        ...

    def delete_dispatch(self, event_id: str, recipient: str, content_hash: str) -> bool:
        ...

    def exists_in_cycle(self, event_id: str, cycle_key: str) -> bool:
        ...


class SenderPort(Protocol):
    """Delivery operation required by the alert processor.

    Implementations raise on transport failure and own their timeouts and
    retries; the core never retries.
    """

    async def send(self, recipient_address: str, subject: str, html: str, text: str) -> None:
        ...


RenderCapability = Callable[[RenderContext], RenderedMessage]
