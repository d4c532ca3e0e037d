"""Push hook for document status changes.

Polling ``GET /documents/{id}`` remains the contract; subscribers here are
an optional convenience (Slack alerts, websocket fan-out, ...).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChange:
    document_id: UUID
    org_id: str
    from_status: str | None
    to_status: str
    file_name: str | None = None
    quote_id: UUID | None = None
    error_message: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


StatusSubscriber = Callable[[StatusChange], Awaitable[None]]


class StatusNotifier:
    """Fan status changes out to async subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[StatusSubscriber] = []

    def subscribe(self, subscriber: StatusSubscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, change: StatusChange) -> None:
        for subscriber in list(self._subscribers):
            try:
                await subscriber(change)
            except Exception:
                # A broken subscriber must not undo a committed transition
                logger.exception(
                    "Status subscriber %r failed for document %s",
                    subscriber,
                    change.document_id,
                )
