import random
from datetime import timedelta
from decimal import Decimal

import pytest

from buildingops.tickets.activity import ActivityLogRecorder
from buildingops.tickets.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from buildingops.tickets.lifecycle import TicketLifecycle
from buildingops.tickets.models import Money, QuoteRequestStatus
from buildingops.tickets.quotes import REJECTED_BY_SELECTION, QuoteRequestLedger, to_money
from buildingops.tickets.state import TicketStatus


@pytest.fixture
def ledger(clock):
    return QuoteRequestLedger(TicketLifecycle(ActivityLogRecorder(clock=clock), clock=clock), clock=clock)


def gbp(amount) -> Money:
    return Money(amount=Decimal(str(amount)), currency="GBP")


def test_request_quotes_creates_pending_requests_and_moves_to_quoting(ledger, ticket_factory, suppliers):
    ticket = ticket_factory()

    batch = ledger.request_quotes(ticket, suppliers[:2], requested_by="m1")

    assert [request.supplier_id for request in batch.created] == ["supA", "supB"]
    assert all(request.status == QuoteRequestStatus.PENDING for request in ticket.quote_requests)
    assert ticket.quote_requests[0].id.startswith("t1-supA-")
    assert ticket.status == TicketStatus.QUOTING
    assert [entry.action for entry in ticket.activity_log] == ["Quotes Requested", "Status Updated"]
    assert ticket.activity_log[0].metadata["supplier_count"] == 2
    assert ticket.activity_log[1].metadata["previous_status"] == "new"
    assert ticket.activity_log[1].metadata["new_status"] == "quoting"


def test_request_quotes_skips_already_solicited_suppliers(ledger, ticket_factory, suppliers):
    ticket = ticket_factory()
    ledger.request_quotes(ticket, [suppliers[0]], requested_by="m1")

    batch = ledger.request_quotes(ticket, [suppliers[0]], requested_by="m1")

    assert batch.created == []
    assert batch.skipped == ["supA"]
    assert len([r for r in ticket.quote_requests if r.supplier_id == "supA"]) == 1
    assert len(ticket.activity_log) == 2


def test_request_quotes_while_quoting_adds_suppliers_without_status_entry(ledger, ticket_factory, suppliers):
    ticket = ticket_factory()
    ledger.request_quotes(ticket, [suppliers[0]], requested_by="m1")

    batch = ledger.request_quotes(ticket, suppliers[:2], requested_by="m1")

    assert [request.supplier_id for request in batch.created] == ["supB"]
    assert batch.skipped == ["supA"]
    assert not batch.status_changed
    assert ticket.activity_log[-1].action == "Quotes Requested"


def test_request_quotes_requires_suppliers(ledger, ticket_factory):
    with pytest.raises(ValidationError):
        ledger.request_quotes(ticket_factory(), [], requested_by="m1")


def test_request_quotes_rejected_after_contract(ledger, ticket_factory, suppliers):
    ticket = ticket_factory(status=TicketStatus.CONTRACTED)

    with pytest.raises(InvalidTransitionError):
        ledger.request_quotes(ticket, suppliers[:1], requested_by="m1")
    assert ticket.quote_requests == []
    assert ticket.status == TicketStatus.CONTRACTED


def test_record_quote_amount_marks_received(ledger, ticket_factory, suppliers, clock):
    ticket = ticket_factory()
    ledger.request_quotes(ticket, suppliers[:1], requested_by="m1")
    clock.advance(hours=1)
    valid_until = clock.now + timedelta(days=14)

    request = ledger.record_quote_amount(ticket, "supA", gbp(150), actor="m1", notes="Parts included", valid_until=valid_until)

    assert request.status == QuoteRequestStatus.RECEIVED
    assert request.quote_amount == gbp(150)
    assert request.notes == "Parts included"
    assert request.valid_until == valid_until
    assert request.updated_at == clock.now
    assert ticket.activity_log[-1].action == "Quote Received"


def test_record_quote_amount_can_revise_received_quote(ledger, ticket_factory, suppliers):
    ticket = ticket_factory()
    ledger.request_quotes(ticket, suppliers[:1], requested_by="m1")
    ledger.record_quote_amount(ticket, "supA", gbp(150), actor="m1", notes="first")

    request = ledger.record_quote_amount(ticket, "supA", gbp(140), actor="m1")

    assert request.quote_amount == gbp(140)
    assert request.notes == "first"


def test_record_quote_amount_for_unknown_supplier(ledger, ticket_factory):
    with pytest.raises(NotFoundError):
        ledger.record_quote_amount(ticket_factory(), "nobody", gbp(10), actor="m1")


@pytest.mark.parametrize("amount", [0, -5, "abc", "NaN"])
def test_to_money_rejects_non_positive_or_malformed_amounts(amount):
    with pytest.raises(ValidationError):
        to_money(amount, "GBP")


def test_to_money_normalises_currency():
    assert to_money("99.50", "gbp") == Money(amount=Decimal("99.50"), currency="GBP")
    with pytest.raises(ValidationError):
        to_money(10, "pounds")


def _quoted_ticket(ledger, ticket_factory, suppliers):
    ticket = ticket_factory()
    ledger.request_quotes(ticket, suppliers, requested_by="m1")
    ledger.record_quote_amount(ticket, "supA", gbp(150), actor="m1")
    ledger.record_quote_amount(ticket, "supB", gbp(120), actor="m1")
    return ticket


def test_accept_quote_rejects_other_received_quotes_and_keeps_pending(ledger, ticket_factory, suppliers):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)

    acceptance = ledger.accept_quote(ticket, "supB", actor="m1")

    by_supplier = {request.supplier_id: request for request in ticket.quote_requests}
    assert acceptance.winner is by_supplier["supB"]
    assert by_supplier["supB"].status == QuoteRequestStatus.ACCEPTED
    assert by_supplier["supB"].is_winner
    assert by_supplier["supA"].status == QuoteRequestStatus.REJECTED
    assert by_supplier["supA"].rejection_reason == REJECTED_BY_SELECTION
    assert not by_supplier["supA"].is_winner
    assert by_supplier["supC"].status == QuoteRequestStatus.PENDING
    assert ticket.status == TicketStatus.CONTRACTED
    assert ticket.assigned_to == "supB"
    assert [entry.action for entry in ticket.activity_log[-2:]] == ["Quote Accepted", "Status Updated"]


def test_second_accept_conflicts(ledger, ticket_factory, suppliers):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)
    ledger.accept_quote(ticket, "supB", actor="m1")

    with pytest.raises(ConflictError):
        ledger.accept_quote(ticket, "supA", actor="m2")
    assert sum(request.is_winner for request in ticket.quote_requests) == 1


def test_accept_requires_received_quote(ledger, ticket_factory, suppliers):
    ticket = ticket_factory()
    ledger.request_quotes(ticket, suppliers[:1], requested_by="m1")

    with pytest.raises(InvalidTransitionError) as exc:
        ledger.accept_quote(ticket, "supA", actor="m1")
    assert exc.value.current == "pending"
    assert ticket.status == TicketStatus.QUOTING


def test_record_amount_after_winner_conflicts(ledger, ticket_factory, suppliers):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)
    ledger.accept_quote(ticket, "supB", actor="m1")

    with pytest.raises(ConflictError):
        ledger.record_quote_amount(ticket, "supC", gbp(90), actor="m1")


def test_reject_quote_requires_reason_and_received_status(ledger, ticket_factory, suppliers):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)

    with pytest.raises(ValidationError):
        ledger.reject_quote(ticket, "supA", "   ", actor="m1")
    with pytest.raises(InvalidTransitionError):
        ledger.reject_quote(ticket, "supC", "Too slow", actor="m1")

    request = ledger.reject_quote(ticket, "supA", "Too expensive", actor="m1")

    assert request.status == QuoteRequestStatus.REJECTED
    assert request.rejection_reason == "Too expensive"
    assert ticket.status == TicketStatus.QUOTING


def test_withdraw_only_pending_requests(ledger, ticket_factory, suppliers):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)

    withdrawn = ledger.withdraw_quote_request(ticket, "supC", actor="m1")

    assert withdrawn.status == QuoteRequestStatus.CANCELLED
    with pytest.raises(InvalidTransitionError):
        ledger.withdraw_quote_request(ticket, "supA", actor="m1")


def test_summary_reports_counts_and_best_price(ledger, ticket_factory, suppliers):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)
    assert ledger.summary(ticket).best_price == gbp(120)

    ledger.accept_quote(ticket, "supB", actor="m1")
    summary = ledger.summary(ticket)

    assert summary.pending_count == 1
    assert summary.received_count == 0
    assert summary.accepted_count == 1
    assert summary.best_price == gbp(120)


def test_summary_without_quotes_has_no_best_price(ledger, ticket_factory):
    summary = ledger.summary(ticket_factory())
    assert summary.best_price is None
    assert (summary.pending_count, summary.received_count, summary.accepted_count) == (0, 0, 0)


def test_random_operation_sequences_never_produce_two_winners(ledger, ticket_factory, suppliers):
    rng = random.Random(20260302)
    supplier_ids = [supplier.id for supplier in suppliers]

    for _ in range(50):
        ticket = ticket_factory()
        for _ in range(12):
            operation = rng.choice(["request", "record", "accept"])
            supplier_id = rng.choice(supplier_ids)
            try:
                if operation == "request":
                    chosen = [s for s in suppliers if s.id == supplier_id]
                    ledger.request_quotes(ticket, chosen, requested_by="m1")
                elif operation == "record":
                    ledger.record_quote_amount(ticket, supplier_id, gbp(rng.randint(50, 500)), actor="m1")
                else:
                    ledger.accept_quote(ticket, supplier_id, actor="m1")
            except (ConflictError, InvalidTransitionError, NotFoundError):
                pass

            winners = [request for request in ticket.quote_requests if request.is_winner]
            assert len(winners) <= 1
            if winners:
                assert all(r.status != QuoteRequestStatus.RECEIVED for r in ticket.quote_requests)
            for request in ticket.quote_requests:
                assert request.is_winner == (request.status == QuoteRequestStatus.ACCEPTED)


@pytest.mark.parametrize("status", [TicketStatus.CANCELLED, TicketStatus.CLOSED])
def test_terminal_ticket_quote_requests_are_frozen(ledger, ticket_factory, suppliers, status):
    ticket = _quoted_ticket(ledger, ticket_factory, suppliers)
    ticket.status = status
    entries_before = len(ticket.activity_log)

    with pytest.raises(InvalidTransitionError) as exc:
        ledger.record_quote_amount(ticket, "supC", gbp(90), actor="m1")
    assert exc.value.current == status.value
    with pytest.raises(InvalidTransitionError):
        ledger.reject_quote(ticket, "supA", "Too expensive", actor="m1")
    with pytest.raises(InvalidTransitionError):
        ledger.withdraw_quote_request(ticket, "supC", actor="m1")

    by_supplier = {request.supplier_id: request.status for request in ticket.quote_requests}
    assert by_supplier == {
        "supA": QuoteRequestStatus.RECEIVED,
        "supB": QuoteRequestStatus.RECEIVED,
        "supC": QuoteRequestStatus.PENDING,
    }
    assert len(ticket.activity_log) == entries_before
