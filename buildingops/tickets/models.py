from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from .state import TicketStatus


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class QuoteRequestStatus(str, Enum):
    """States of a single supplier solicitation."""

    PENDING = "pending"
    RECEIVED = "received"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ActorRole(str, Enum):
    MANAGER = "manager"
    RESIDENT = "resident"
    SUPPLIER = "supplier"


@dataclass(slots=True, frozen=True)
class Actor:
    """Authenticated entity invoking a workflow operation."""

    id: str
    role: ActorRole


@dataclass(slots=True, frozen=True)
class Money:
    """Non-negative decimal amount with an explicit ISO 4217 currency code."""

    amount: Decimal
    currency: str


@dataclass(slots=True)
class Supplier:
    id: str
    name: str
    company_name: str = ""
    email: str = ""
    specialties: list[str] = field(default_factory=list)
    rating: float | None = None
    is_active: bool = True


@dataclass(slots=True)
class QuoteRequest:
    """One supplier's solicitation-and-response record attached to a ticket."""

    id: str
    supplier_id: str
    supplier_name: str
    status: QuoteRequestStatus
    sent_at: datetime
    updated_at: datetime
    quote_amount: Money | None = None
    notes: str | None = None
    valid_until: datetime | None = None
    is_winner: bool = False
    rejection_reason: str | None = None


@dataclass(slots=True)
class ActivityLogEntry:
    """Append-only audit record describing one state-changing action."""

    id: str
    action: str
    description: str
    performed_by: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Comment:
    id: str
    ticket_id: str
    author_id: str
    author_role: ActorRole
    content: str
    created_at: datetime


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a maintenance ticket and everything it owns."""

    id: str
    title: str
    description: str
    location: str
    urgency: Urgency
    building_id: str
    requested_by: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    assigned_to: str | None = None
    scheduled_date: datetime | None = None
    completed_date: datetime | None = None
    quote_requests: list[QuoteRequest] = field(default_factory=list)
    activity_log: list[ActivityLogEntry] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    version: int = 0

    def find_quote_request(self, supplier_id: str) -> QuoteRequest | None:
        for request in self.quote_requests:
            if request.supplier_id == supplier_id:
                return request
        return None

    def winner(self) -> QuoteRequest | None:
        for request in self.quote_requests:
            if request.is_winner:
                return request
        return None


@dataclass(slots=True)
class QuoteSummary:
    """Derived counts and best price over a ticket's quote requests."""

    pending_count: int
    received_count: int
    accepted_count: int
    best_price: Money | None


@dataclass(slots=True)
class TicketFilter:
    """Narrow ticket queries; ``None`` fields do not filter."""

    status: TicketStatus | None = None
    building_ids: frozenset[str] | None = None
    requested_by: str | None = None

    def matches(self, ticket: Ticket) -> bool:
        if self.status is not None and ticket.status != self.status:
            return False
        if self.building_ids is not None:
            if "*" not in self.building_ids and ticket.building_id not in self.building_ids:
                return False
        if self.requested_by is not None and ticket.requested_by != self.requested_by:
            return False
        return True
