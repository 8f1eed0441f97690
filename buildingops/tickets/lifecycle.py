from __future__ import annotations

import logging
from typing import Any

from .activity import ActivityLogRecorder, Clock, utcnow
from .models import Ticket
from .state import TicketStateMachine, TicketStatus, TicketTrigger

logger = logging.getLogger(__name__)


class TicketLifecycle:
    """Apply state machine triggers to a ticket aggregate and journal them."""

    def __init__(
        self,
        recorder: ActivityLogRecorder | None = None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._clock = clock or utcnow
        self._recorder = recorder or ActivityLogRecorder(clock=self._clock)

    @property
    def recorder(self) -> ActivityLogRecorder:
        return self._recorder

    def fire(
        self,
        ticket: Ticket,
        trigger: TicketTrigger,
        *,
        actor: str,
        metadata: dict[str, Any] | None = None,
    ) -> TicketStatus:
        """Move ``ticket`` to the state reached by ``trigger``.

        Raises ``InvalidTransitionError`` before touching the ticket when the trigger
        is not allowed from the current state.
        """

        previous = ticket.status
        target = TicketStateMachine.target(previous, trigger)
        ticket.status = target
        ticket.updated_at = self._clock()
        self._recorder.record(
            ticket,
            action="Status Updated",
            description=f"Status changed from {previous.value} to {target.value}",
            performed_by=actor,
            metadata={
                "previous_status": previous.value,
                "new_status": target.value,
                "trigger": trigger.value,
                **(metadata or {}),
            },
        )
        logger.info("Ticket %s moved %s -> %s via %s", ticket.id, previous.value, target.value, trigger.value)
        return target
