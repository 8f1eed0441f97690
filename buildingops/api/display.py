"""Presentation labels for ticket statuses.

The workflow only understands ``TicketStatus``. Labels are produced and parsed here,
at the HTTP boundary, so legacy UI values map onto the canonical states.
"""

from __future__ import annotations

from buildingops.tickets.models import QuoteRequestStatus, Ticket
from buildingops.tickets.state import TicketStatus

STATUS_LABELS: dict[TicketStatus, str] = {
    TicketStatus.NEW: "New",
    TicketStatus.QUOTING: "Quoting",
    TicketStatus.CONTRACTED: "Contracted",
    TicketStatus.SCHEDULED: "Scheduled",
    TicketStatus.IN_PROGRESS: "In Progress",
    TicketStatus.COMPLETE: "Complete",
    TicketStatus.CLOSED: "Closed",
    TicketStatus.CANCELLED: "Cancelled",
}

LABEL_ALIASES: dict[str, TicketStatus] = {
    "quote requested": TicketStatus.QUOTING,
    "quote received": TicketStatus.QUOTING,
    "po sent": TicketStatus.CONTRACTED,
    **{label.lower(): status for status, label in STATUS_LABELS.items()},
    **{status.value: status for status in TicketStatus},
}


def parse_status_label(label: str) -> TicketStatus:
    """Map a canonical value or any known display label to ``TicketStatus``."""

    try:
        return LABEL_ALIASES[label.strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown ticket status label: {label!r}") from None


def display_label(ticket: Ticket) -> str:
    if ticket.status == TicketStatus.QUOTING:
        received = any(request.status == QuoteRequestStatus.RECEIVED for request in ticket.quote_requests)
        return "Quote Received" if received else "Quote Requested"
    return STATUS_LABELS[ticket.status]
