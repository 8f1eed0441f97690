"""Append-only activity journal attached to each ticket."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from .models import ActivityLogEntry, Ticket

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityLogRecorder:
    """Write and read a ticket's activity entries.

    Entries are only ever appended. Corrections are recorded as new entries, so the
    recorder exposes no edit or delete operation.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or utcnow

    def record(
        self,
        ticket: Ticket,
        *,
        action: str,
        description: str,
        performed_by: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=str(uuid.uuid4()),
            action=action,
            description=description,
            performed_by=performed_by,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
        )
        return self.append(ticket, entry)

    def append(self, ticket: Ticket, entry: ActivityLogEntry) -> ActivityLogEntry:
        ticket.activity_log.append(entry)
        return entry

    @staticmethod
    def entries(ticket: Ticket) -> list[ActivityLogEntry]:
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(ticket.activity_log, key=lambda entry: entry.timestamp)
