"""Per-ticket ledger of supplier quote requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Sequence

from .activity import ActivityLogRecorder, Clock, utcnow
from .errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .lifecycle import TicketLifecycle
from .models import Money, QuoteRequest, QuoteRequestStatus, QuoteSummary, Supplier, Ticket
from .state import TicketStateMachine, TicketStatus, TicketTrigger

logger = logging.getLogger(__name__)

REJECTED_BY_SELECTION = "Another quote was selected"

_PRICED_STATES = (QuoteRequestStatus.RECEIVED, QuoteRequestStatus.ACCEPTED)


def to_money(amount: Decimal | int | float | str, currency: str) -> Money:
    """Build a positive ``Money`` value or raise ``ValidationError``."""

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid quote amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError("Quote amount must be greater than zero")
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code: {currency!r}")
    return Money(amount=value, currency=code)


@dataclass(slots=True)
class QuoteRequestBatch:
    created: list[QuoteRequest]
    skipped: list[str]
    status_changed: bool


@dataclass(slots=True)
class QuoteAcceptance:
    winner: QuoteRequest
    rejected: list[QuoteRequest]


class QuoteRequestLedger:
    """Track supplier solicitations for a ticket and resolve them to one winner.

    Every method mutates the ``Ticket`` it is given in place and is expected to run
    inside the store's transactional update so that concurrent writers cannot both
    observe the same "no winner yet" snapshot.
    """

    def __init__(self, lifecycle: TicketLifecycle | None = None, *, clock: Clock | None = None) -> None:
        self._clock = clock or utcnow
        self._lifecycle = lifecycle or TicketLifecycle(clock=self._clock)

    @property
    def _recorder(self) -> ActivityLogRecorder:
        return self._lifecycle.recorder

    def request_quotes(
        self,
        ticket: Ticket,
        suppliers: Sequence[Supplier],
        *,
        requested_by: str,
    ) -> QuoteRequestBatch:
        if not suppliers:
            raise ValidationError("At least one supplier must be selected")
        if ticket.status not in (TicketStatus.NEW, TicketStatus.QUOTING):
            raise InvalidTransitionError(TicketTrigger.REQUEST_QUOTES.value, ticket.status.value)

        now = self._clock()
        created: list[QuoteRequest] = []
        skipped: list[str] = []
        seen: set[str] = set()
        for supplier in suppliers:
            if supplier.id in seen or ticket.find_quote_request(supplier.id) is not None:
                skipped.append(supplier.id)
                continue
            seen.add(supplier.id)
            created.append(
                QuoteRequest(
                    id=f"{ticket.id}-{supplier.id}-{int(now.timestamp() * 1000)}",
                    supplier_id=supplier.id,
                    supplier_name=supplier.name,
                    status=QuoteRequestStatus.PENDING,
                    sent_at=now,
                    updated_at=now,
                )
            )

        if not created:
            logger.debug("All suppliers already solicited for ticket %s", ticket.id)
            return QuoteRequestBatch(created=[], skipped=skipped, status_changed=False)

        ticket.quote_requests.extend(created)
        ticket.updated_at = now
        self._recorder.record(
            ticket,
            action="Quotes Requested",
            description=f"Quote requests sent to {len(created)} supplier(s)",
            performed_by=requested_by,
            metadata={
                "supplier_ids": [request.supplier_id for request in created],
                "supplier_count": len(created),
                "skipped_supplier_ids": skipped,
            },
        )

        status_changed = False
        if ticket.status == TicketStatus.NEW:
            self._lifecycle.fire(ticket, TicketTrigger.REQUEST_QUOTES, actor=requested_by)
            status_changed = True
        return QuoteRequestBatch(created=created, skipped=skipped, status_changed=status_changed)

    def record_quote_amount(
        self,
        ticket: Ticket,
        supplier_id: str,
        amount: Money,
        *,
        actor: str,
        notes: str | None = None,
        valid_until: datetime | None = None,
    ) -> QuoteRequest:
        self._require_open(ticket, "record_quote_amount")
        request = self._require(ticket, supplier_id)
        if ticket.winner() is not None:
            raise ConflictError(f"Ticket {ticket.id} already has an accepted quote")
        if request.status not in (QuoteRequestStatus.PENDING, QuoteRequestStatus.RECEIVED):
            raise InvalidTransitionError("record_quote_amount", request.status.value)
        if amount.amount <= 0:
            raise ValidationError("Quote amount must be greater than zero")

        now = self._clock()
        request.status = QuoteRequestStatus.RECEIVED
        request.quote_amount = amount
        if notes is not None:
            request.notes = notes
        if valid_until is not None:
            request.valid_until = valid_until
        request.updated_at = now
        ticket.updated_at = now

        self._recorder.record(
            ticket,
            action="Quote Received",
            description=f"Quote received from {request.supplier_name} - {amount.currency} {amount.amount}",
            performed_by=actor,
            metadata={
                "supplier_id": supplier_id,
                "supplier_name": request.supplier_name,
                "amount": str(amount.amount),
                "currency": amount.currency,
            },
        )
        return request

    def accept_quote(self, ticket: Ticket, supplier_id: str, *, actor: str) -> QuoteAcceptance:
        target = self._require(ticket, supplier_id)
        existing = ticket.winner()
        if existing is not None:
            raise ConflictError(
                f"Ticket {ticket.id} already accepted the quote from supplier {existing.supplier_id}"
            )
        if target.status != QuoteRequestStatus.RECEIVED:
            raise InvalidTransitionError(TicketTrigger.ACCEPT_QUOTE.value, target.status.value)
        if ticket.status != TicketStatus.QUOTING:
            raise InvalidTransitionError(TicketTrigger.ACCEPT_QUOTE.value, ticket.status.value)

        now = self._clock()
        target.status = QuoteRequestStatus.ACCEPTED
        target.is_winner = True
        target.updated_at = now

        rejected: list[QuoteRequest] = []
        for request in ticket.quote_requests:
            if request is target or request.status != QuoteRequestStatus.RECEIVED:
                continue
            request.status = QuoteRequestStatus.REJECTED
            request.is_winner = False
            request.rejection_reason = REJECTED_BY_SELECTION
            request.updated_at = now
            rejected.append(request)

        ticket.assigned_to = supplier_id
        amount = target.quote_amount
        self._recorder.record(
            ticket,
            action="Quote Accepted",
            description=f"Quote accepted from {target.supplier_name}"
            + (f" - {amount.currency} {amount.amount}" if amount else ""),
            performed_by=actor,
            metadata={
                "supplier_id": supplier_id,
                "supplier_name": target.supplier_name,
                "amount": str(amount.amount) if amount else None,
                "rejected_supplier_ids": [request.supplier_id for request in rejected],
            },
        )
        self._lifecycle.fire(ticket, TicketTrigger.ACCEPT_QUOTE, actor=actor, metadata={"supplier_id": supplier_id})
        return QuoteAcceptance(winner=target, rejected=rejected)

    def reject_quote(self, ticket: Ticket, supplier_id: str, reason: str, *, actor: str) -> QuoteRequest:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        self._require_open(ticket, "reject_quote")
        request = self._require(ticket, supplier_id)
        if request.status != QuoteRequestStatus.RECEIVED:
            raise InvalidTransitionError("reject_quote", request.status.value)

        now = self._clock()
        request.status = QuoteRequestStatus.REJECTED
        request.rejection_reason = reason.strip()
        request.is_winner = False
        request.updated_at = now
        ticket.updated_at = now
        self._recorder.record(
            ticket,
            action="Quote Rejected",
            description=f"Quote rejected from {request.supplier_name} - Reason: {request.rejection_reason}",
            performed_by=actor,
            metadata={
                "supplier_id": supplier_id,
                "supplier_name": request.supplier_name,
                "reason": request.rejection_reason,
            },
        )
        return request

    def withdraw_quote_request(self, ticket: Ticket, supplier_id: str, *, actor: str) -> QuoteRequest:
        self._require_open(ticket, "withdraw_quote_request")
        request = self._require(ticket, supplier_id)
        if request.status != QuoteRequestStatus.PENDING:
            raise InvalidTransitionError("withdraw_quote_request", request.status.value)

        now = self._clock()
        request.status = QuoteRequestStatus.CANCELLED
        request.updated_at = now
        ticket.updated_at = now
        self._recorder.record(
            ticket,
            action="Quote Request Withdrawn",
            description=f"Quote request to {request.supplier_name} withdrawn",
            performed_by=actor,
            metadata={"supplier_id": supplier_id, "supplier_name": request.supplier_name},
        )
        return request

    @staticmethod
    def summary(ticket: Ticket) -> QuoteSummary:
        pending = received = accepted = 0
        best: Money | None = None
        for request in ticket.quote_requests:
            if request.status == QuoteRequestStatus.PENDING:
                pending += 1
            elif request.status == QuoteRequestStatus.RECEIVED:
                received += 1
            elif request.status == QuoteRequestStatus.ACCEPTED:
                accepted += 1
            if request.status in _PRICED_STATES and request.quote_amount is not None:
                if best is None or request.quote_amount.amount < best.amount:
                    best = request.quote_amount
        return QuoteSummary(
            pending_count=pending,
            received_count=received,
            accepted_count=accepted,
            best_price=best,
        )

    @staticmethod
    def _require(ticket: Ticket, supplier_id: str) -> QuoteRequest:
        request = ticket.find_quote_request(supplier_id)
        if request is None:
            raise NotFoundError(f"No quote request for supplier {supplier_id} on ticket {ticket.id}")
        return request

    @staticmethod
    def _require_open(ticket: Ticket, operation: str) -> None:
        if ticket.status in TicketStateMachine.TERMINAL_STATES:
            raise InvalidTransitionError(operation, ticket.status.value)
