from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from buildingops.tickets.activity import ActivityLogRecorder
from buildingops.tickets.errors import ConflictError, NotFoundError
from buildingops.tickets.models import Money, QuoteRequest, QuoteRequestStatus, TicketFilter
from buildingops.tickets.repository import (
    InMemoryTicketStore,
    PostgresTicketStore,
    document_to_ticket,
    ticket_to_document,
)
from buildingops.tickets.state import TicketStatus


class DummyAcquire:
    def __init__(self, connection):
        self._connection = connection

    async def __aenter__(self):
        return self._connection

    async def __aexit__(self, exc_type, exc, tb):
        return False


class DummyTransaction:
    def __init__(self):
        self.exited_with = "not exited"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited_with = exc_type
        return False


class DummyPool:
    def __init__(self, connection):
        self._connection = connection

    def acquire(self):
        return DummyAcquire(self._connection)


def _connection() -> AsyncMock:
    connection = AsyncMock()
    connection.transaction = MagicMock(return_value=DummyTransaction())
    return connection


def _row(ticket, *, version: int = 0) -> dict:
    return {"id": ticket.id, "version": version, "document": json.dumps(ticket_to_document(ticket))}


@pytest.mark.asyncio
async def test_ensure_schema_creates_table_and_index():
    connection = _connection()
    store = PostgresTicketStore(DummyPool(connection))

    await store.ensure_schema()

    assert connection.execute.await_count == 2
    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert any("CREATE TABLE IF NOT EXISTS tickets" in stmt for stmt in executed)
    assert any("tickets_building_status_idx" in stmt for stmt in executed)


@pytest.mark.asyncio
async def test_create_inserts_document_and_notifies(ticket_factory):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value={"id": "t1"})
    store = PostgresTicketStore(DummyPool(connection))

    created = await store.create(ticket_factory())

    assert created.id == "t1"
    args = connection.fetchrow.await_args.args
    assert args[1:5] == ("t1", "b1", "new", "r1")
    assert json.loads(args[6])["title"] == "Leaking tap"
    connection.execute.assert_awaited_with(PostgresTicketStore._NOTIFY_SQL, "ticket_changes", "t1")


@pytest.mark.asyncio
async def test_create_duplicate_raises_conflict(ticket_factory):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=None)
    store = PostgresTicketStore(DummyPool(connection))

    with pytest.raises(ConflictError):
        await store.create(ticket_factory())
    connection.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_returns_none_for_missing_row():
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=None)
    store = PostgresTicketStore(DummyPool(connection))

    assert await store.get("missing") is None


@pytest.mark.asyncio
async def test_transactional_update_locks_row_and_bumps_version(ticket_factory):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_row(ticket_factory(), version=3))
    connection.execute = AsyncMock(side_effect=["UPDATE 1", "SELECT 1"])
    store = PostgresTicketStore(DummyPool(connection))

    def mutate(ticket):
        ticket.status = TicketStatus.CANCELLED
        return ticket

    updated = await store.transactional_update("t1", mutate)

    assert updated.version == 4
    assert updated.status == TicketStatus.CANCELLED
    assert "FOR UPDATE" in connection.fetchrow.await_args.args[0]
    update_args = connection.execute.await_args_list[0].args
    assert update_args[1:4] == ("t1", "cancelled", 4)
    assert update_args[6] == 3


@pytest.mark.asyncio
async def test_transactional_update_raises_conflict_when_version_moved(ticket_factory):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_row(ticket_factory(), version=1))
    connection.execute = AsyncMock(return_value="UPDATE 0")
    store = PostgresTicketStore(DummyPool(connection))

    with pytest.raises(ConflictError):
        await store.transactional_update("t1", lambda ticket: ticket)

    assert connection.execute.await_count == 1
    assert connection.transaction.return_value.exited_with is ConflictError


@pytest.mark.asyncio
async def test_transactional_update_missing_ticket(ticket_factory):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=None)
    store = PostgresTicketStore(DummyPool(connection))
    mutation = MagicMock()

    with pytest.raises(NotFoundError):
        await store.transactional_update("missing", mutation)
    mutation.assert_not_called()


@pytest.mark.asyncio
async def test_mutation_error_aborts_without_write(ticket_factory):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_row(ticket_factory()))
    store = PostgresTicketStore(DummyPool(connection))

    def mutate(ticket):
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await store.transactional_update("t1", mutate)
    connection.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_query_builds_filter_clauses(ticket_factory):
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[_row(ticket_factory())])
    store = PostgresTicketStore(DummyPool(connection))

    tickets = await store.query(
        TicketFilter(status=TicketStatus.NEW, building_ids=frozenset({"b2", "b1"}), requested_by="r1")
    )

    assert [ticket.id for ticket in tickets] == ["t1"]
    sql, *args = connection.fetch.await_args.args
    assert "status = $1" in sql
    assert "building_id = ANY($2::text[])" in sql
    assert "requested_by = $3" in sql
    assert args == ["new", ["b1", "b2"], "r1"]


@pytest.mark.asyncio
async def test_query_wildcard_building_skips_building_clause():
    connection = _connection()
    connection.fetch = AsyncMock(return_value=[])
    store = PostgresTicketStore(DummyPool(connection))

    await store.query(TicketFilter(building_ids=frozenset({"*"})))

    sql, *args = connection.fetch.await_args.args
    assert "WHERE" not in sql
    assert args == []


def test_document_round_trip_keeps_money_and_timestamps(ticket_factory):
    ticket = ticket_factory()
    moment = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
    ticket.quote_requests.append(
        QuoteRequest(
            id="t1-supA-1",
            supplier_id="supA",
            supplier_name="Acme Plumbing",
            status=QuoteRequestStatus.RECEIVED,
            sent_at=moment,
            updated_at=moment,
            quote_amount=Money(amount=Decimal("149.99"), currency="GBP"),
        )
    )

    document = json.loads(json.dumps(ticket_to_document(ticket)))
    restored = document_to_ticket(document)

    assert document["quote_requests"][0]["quote_amount"] == {"amount": "149.99", "currency": "GBP"}
    assert restored.quote_requests[0].quote_amount == Money(amount=Decimal("149.99"), currency="GBP")
    assert restored.quote_requests[0].sent_at == moment
    assert restored.created_at == ticket.created_at


def test_document_treats_naive_timestamps_as_utc(ticket_factory):
    document = ticket_to_document(ticket_factory())
    document["created_at"] = "2026-03-02T09:00:00"

    assert document_to_ticket(document).created_at.tzinfo == timezone.utc


@pytest.mark.asyncio
async def test_in_memory_store_rejects_duplicate_and_missing(ticket_factory):
    store = InMemoryTicketStore()
    await store.create(ticket_factory())

    with pytest.raises(ConflictError):
        await store.create(ticket_factory())
    with pytest.raises(NotFoundError):
        await store.transactional_update("missing", lambda ticket: ticket)


@pytest.mark.asyncio
async def test_in_memory_store_discards_failed_mutation(ticket_factory):
    store = InMemoryTicketStore()
    await store.create(ticket_factory())

    def mutate(ticket):
        ticket.status = TicketStatus.CANCELLED
        raise ValueError("boom")

    with pytest.raises(ValueError):
        await store.transactional_update("t1", mutate)

    stored = await store.get("t1")
    assert stored.status == TicketStatus.NEW
    assert stored.version == 0


@pytest.mark.asyncio
async def test_in_memory_subscriber_failure_is_isolated(ticket_factory):
    store = InMemoryTicketStore()
    received = []

    async def broken(ticket):
        raise RuntimeError("subscriber crashed")

    async def healthy(ticket):
        received.append(ticket.id)

    await store.subscribe(TicketFilter(), broken)
    await store.subscribe(TicketFilter(), healthy)
    await store.create(ticket_factory())

    assert received == ["t1"]


@pytest.mark.asyncio
async def test_transactional_update_stores_free_form_activity_metadata(ticket_factory, clock):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value=_row(ticket_factory()))
    connection.execute = AsyncMock(side_effect=["UPDATE 1", "SELECT 1"])
    store = PostgresTicketStore(DummyPool(connection))
    recorder = ActivityLogRecorder(clock=clock)

    def mutate(ticket):
        recorder.record(
            ticket,
            action="Site Visit",
            description="",
            performed_by="m1",
            metadata={"at": clock.now, "amount": Decimal("1.5"), "tags": {"roof"}},
        )
        return ticket

    updated = await store.transactional_update("t1", mutate)

    stored = json.loads(connection.execute.await_args_list[0].args[4])
    assert stored["activity_log"][-1]["metadata"] == {
        "at": "2026-03-02 09:00:00+00:00",
        "amount": "1.5",
        "tags": "{'roof'}",
    }
    assert updated.activity_log[-1].metadata["amount"] == Decimal("1.5")


@pytest.mark.asyncio
async def test_create_stores_free_form_activity_metadata(ticket_factory, clock):
    connection = _connection()
    connection.fetchrow = AsyncMock(return_value={"id": "t1"})
    store = PostgresTicketStore(DummyPool(connection))
    ticket = ticket_factory()
    ActivityLogRecorder(clock=clock).record(
        ticket, action="Ticket Created", description="", performed_by="r1", metadata={"reported_at": clock.now}
    )

    await store.create(ticket)

    document = json.loads(connection.fetchrow.await_args.args[6])
    assert document["activity_log"][0]["metadata"] == {"reported_at": "2026-03-02 09:00:00+00:00"}
