"""Narrow interfaces to systems the ticket workflow consumes but does not own."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Protocol

from .models import Supplier, Ticket

logger = logging.getLogger(__name__)


class SupplierDirectory(Protocol):
    async def get_supplier(self, supplier_id: str) -> Supplier | None:
        ...

    async def list_suppliers(self, *, specialty: str | None = None, active_only: bool = False) -> list[Supplier]:
        ...


class InMemorySupplierDirectory:
    """Read-only supplier lookup backed by a dictionary."""

    def __init__(self, suppliers: Iterable[Supplier] = ()) -> None:
        self._suppliers = {supplier.id: supplier for supplier in suppliers}

    async def get_supplier(self, supplier_id: str) -> Supplier | None:
        return self._suppliers.get(supplier_id)

    async def list_suppliers(self, *, specialty: str | None = None, active_only: bool = False) -> list[Supplier]:
        suppliers = list(self._suppliers.values())
        if active_only:
            suppliers = [supplier for supplier in suppliers if supplier.is_active]
        if specialty:
            wanted = specialty.lower()
            suppliers = [s for s in suppliers if any(item.lower() == wanted for item in s.specialties)]
        return sorted(suppliers, key=lambda supplier: supplier.name.lower())


@dataclass(slots=True, frozen=True)
class CalendarWindow:
    start: datetime
    end: datetime

    @classmethod
    def starting_at(cls, start: datetime, *, minutes: int) -> "CalendarWindow":
        return cls(start=start, end=start + timedelta(minutes=minutes))


@dataclass(slots=True)
class CalendarEvent:
    id: str
    ticket_id: str
    title: str
    description: str
    location: str
    building_id: str
    window: CalendarWindow
    assigned_to: list[str] = field(default_factory=list)
    status: str = "scheduled"


class SchedulingCollaborator(Protocol):
    """Calendar backend used on a best-effort basis.

    Implementations raise ``CollaboratorUnavailableError`` (or anything else) on
    failure; the service logs it and never fails the workflow operation.
    """

    async def create_calendar_entry(self, ticket: Ticket, window: CalendarWindow, *, actor: str) -> CalendarEvent:
        ...

    async def complete_calendar_entries(self, ticket_id: str) -> None:
        ...

    async def cancel_calendar_entries(self, ticket_id: str) -> None:
        ...


class InMemoryScheduler:
    """Keep calendar events in process memory."""

    def __init__(self) -> None:
        self.events: list[CalendarEvent] = []

    async def create_calendar_entry(self, ticket: Ticket, window: CalendarWindow, *, actor: str) -> CalendarEvent:
        assignees = [ticket.assigned_to, actor] if ticket.assigned_to else [actor]
        event = CalendarEvent(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            title=f"Work: {ticket.title}",
            description=f"Scheduled work for ticket: {ticket.description}",
            location=ticket.location,
            building_id=ticket.building_id,
            window=window,
            assigned_to=assignees,
        )
        self.events.append(event)
        logger.info("Created calendar event %s for ticket %s", event.id, ticket.id)
        return event

    async def complete_calendar_entries(self, ticket_id: str) -> None:
        self._set_status(ticket_id, "completed")

    async def cancel_calendar_entries(self, ticket_id: str) -> None:
        self._set_status(ticket_id, "cancelled")

    def events_for(self, ticket_id: str) -> list[CalendarEvent]:
        return [event for event in self.events if event.ticket_id == ticket_id]

    def _set_status(self, ticket_id: str, status: str) -> None:
        for event in self.events_for(ticket_id):
            event.status = status


class NotificationSink(Protocol):
    async def notify(self, actor_id: str, message: str) -> None:
        ...


class LoggingNotificationSink:
    """Notification sink that only writes to the application log."""

    async def notify(self, actor_id: str, message: str) -> None:
        logger.info("Notify %s: %s", actor_id, message)
