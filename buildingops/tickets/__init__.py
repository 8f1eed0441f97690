"""Maintenance ticket workflow: quote ledger, status machine, permissions and audit log."""

from .activity import ActivityLogRecorder
from .errors import (
    CollaboratorUnavailableError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    TicketServiceError,
    ValidationError,
)
from .models import (
    ActivityLogEntry,
    Actor,
    ActorRole,
    Comment,
    Money,
    QuoteRequest,
    QuoteRequestStatus,
    QuoteSummary,
    Supplier,
    Ticket,
    TicketFilter,
    Urgency,
)
from .permissions import can_comment
from .quotes import QuoteRequestLedger
from .service import OperationResult, TicketService
from .state import TicketStateMachine, TicketStatus, TicketTrigger

__all__ = [
    "ActivityLogEntry",
    "ActivityLogRecorder",
    "Actor",
    "ActorRole",
    "CollaboratorUnavailableError",
    "Comment",
    "ConflictError",
    "InvalidTransitionError",
    "Money",
    "NotFoundError",
    "OperationResult",
    "PermissionDeniedError",
    "QuoteRequest",
    "QuoteRequestLedger",
    "QuoteRequestStatus",
    "QuoteSummary",
    "Supplier",
    "Ticket",
    "TicketFilter",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketTrigger",
    "Urgency",
    "ValidationError",
    "can_comment",
]
