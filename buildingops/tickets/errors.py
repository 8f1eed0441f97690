from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket workflow issues."""


class NotFoundError(TicketServiceError):
    """Raised when a ticket, quote request or supplier could not be located."""


class ValidationError(TicketServiceError):
    """Raised when caller input is malformed."""


class InvalidTransitionError(TicketServiceError):
    """Raised when a trigger is not allowed from the current state."""

    def __init__(self, trigger: str, current: str, message: str | None = None) -> None:
        self.trigger = trigger
        self.current = current
        super().__init__(message or f"Cannot apply '{trigger}' while in '{current}'")


class ConflictError(TicketServiceError):
    """Raised when a concurrent writer already changed the ticket."""


class PermissionDeniedError(TicketServiceError):
    """Raised when an actor may not act on a ticket."""


class CollaboratorUnavailableError(TicketServiceError):
    """Raised by best-effort collaborators; never surfaced to callers."""
