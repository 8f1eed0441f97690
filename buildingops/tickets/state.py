from __future__ import annotations

from enum import Enum
from typing import Mapping

from .errors import InvalidTransitionError


class TicketStatus(str, Enum):
    """Canonical states of a maintenance ticket's lifecycle."""

    NEW = "new"
    QUOTING = "quoting"
    CONTRACTED = "contracted"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class TicketTrigger(str, Enum):
    """Workflow actions that move a ticket between states."""

    REQUEST_QUOTES = "request_quotes"
    ACCEPT_QUOTE = "accept_quote"
    SCHEDULE_WORK = "schedule_work"
    START_WORK = "start_work"
    MARK_COMPLETE = "mark_complete"
    CLOSE = "close"
    CANCEL = "cancel"


_CANCELLABLE = frozenset(
    {
        TicketStatus.NEW,
        TicketStatus.QUOTING,
        TicketStatus.CONTRACTED,
        TicketStatus.SCHEDULED,
        TicketStatus.IN_PROGRESS,
    }
)


class TicketStateMachine:
    """Validate ticket lifecycle transitions keyed by trigger."""

    _TRANSITIONS: Mapping[TicketTrigger, tuple[frozenset[TicketStatus], TicketStatus]] = {
        TicketTrigger.REQUEST_QUOTES: (frozenset({TicketStatus.NEW}), TicketStatus.QUOTING),
        TicketTrigger.ACCEPT_QUOTE: (frozenset({TicketStatus.QUOTING}), TicketStatus.CONTRACTED),
        TicketTrigger.SCHEDULE_WORK: (frozenset({TicketStatus.CONTRACTED}), TicketStatus.SCHEDULED),
        TicketTrigger.START_WORK: (frozenset({TicketStatus.SCHEDULED}), TicketStatus.IN_PROGRESS),
        TicketTrigger.MARK_COMPLETE: (frozenset({TicketStatus.IN_PROGRESS}), TicketStatus.COMPLETE),
        TicketTrigger.CLOSE: (frozenset({TicketStatus.COMPLETE}), TicketStatus.CLOSED),
        TicketTrigger.CANCEL: (_CANCELLABLE, TicketStatus.CANCELLED),
    }

    TERMINAL_STATES = frozenset({TicketStatus.CLOSED, TicketStatus.CANCELLED})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.NEW

    @classmethod
    def can_fire(cls, current: TicketStatus, trigger: TicketTrigger) -> bool:
        allowed, _ = cls._TRANSITIONS[trigger]
        return current in allowed

    @classmethod
    def target(cls, current: TicketStatus, trigger: TicketTrigger) -> TicketStatus:
        """Return the state reached by ``trigger`` or raise ``InvalidTransitionError``."""

        allowed, target = cls._TRANSITIONS[trigger]
        if current not in allowed:
            raise InvalidTransitionError(trigger.value, current.value)
        return target

    @classmethod
    def allowed_triggers(cls, current: TicketStatus) -> list[TicketTrigger]:
        return [trigger for trigger in TicketTrigger if cls.can_fire(current, trigger)]
