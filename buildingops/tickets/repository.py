from __future__ import annotations

import asyncio
import copy
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping, Protocol

import asyncpg

from .errors import ConflictError, NotFoundError
from .models import (
    ActivityLogEntry,
    ActorRole,
    Comment,
    Money,
    QuoteRequest,
    QuoteRequestStatus,
    Ticket,
    TicketFilter,
    Urgency,
)
from .state import TicketStatus

logger = logging.getLogger(__name__)

TicketMutation = Callable[[Ticket], Ticket]
TicketCallback = Callable[[Ticket], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


class TicketStore(Protocol):
    """Document store holding ticket aggregates.

    ``transactional_update`` must read, apply ``mutation`` and write as one atomic
    unit per ticket. Errors raised by ``mutation`` abort the write and propagate.
    """

    async def ensure_schema(self) -> None:
        ...

    async def create(self, ticket: Ticket) -> Ticket:
        ...

    async def get(self, ticket_id: str) -> Ticket | None:
        ...

    async def transactional_update(self, ticket_id: str, mutation: TicketMutation) -> Ticket:
        ...

    async def query(self, ticket_filter: TicketFilter | None = None) -> list[Ticket]:
        ...

    async def subscribe(self, ticket_filter: TicketFilter, callback: TicketCallback) -> Unsubscribe:
        ...


class InMemoryTicketStore:
    """Process-local store serialising writers with one ``asyncio.Lock`` per ticket."""

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._subscribers: dict[int, tuple[TicketFilter, TicketCallback]] = {}
        self._next_subscription = 0

    async def ensure_schema(self) -> None:
        return None

    async def create(self, ticket: Ticket) -> Ticket:
        async with self._locks[ticket.id]:
            if ticket.id in self._tickets:
                raise ConflictError(f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = copy.deepcopy(ticket)
        await self._publish(ticket)
        return copy.deepcopy(ticket)

    async def get(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket is not None else None

    async def transactional_update(self, ticket_id: str, mutation: TicketMutation) -> Ticket:
        async with self._locks[ticket_id]:
            current = self._tickets.get(ticket_id)
            if current is None:
                raise NotFoundError(f"Ticket {ticket_id} not found")
            expected_version = current.version
            updated = mutation(copy.deepcopy(current))
            if self._tickets[ticket_id].version != expected_version:
                raise ConflictError(f"Ticket {ticket_id} was modified concurrently")
            updated.version = expected_version + 1
            self._tickets[ticket_id] = copy.deepcopy(updated)
        await self._publish(updated)
        return copy.deepcopy(updated)

    async def query(self, ticket_filter: TicketFilter | None = None) -> list[Ticket]:
        ticket_filter = ticket_filter or TicketFilter()
        tickets = [copy.deepcopy(t) for t in self._tickets.values() if ticket_filter.matches(t)]
        return sorted(tickets, key=lambda ticket: ticket.created_at, reverse=True)

    async def subscribe(self, ticket_filter: TicketFilter, callback: TicketCallback) -> Unsubscribe:
        token = self._next_subscription
        self._next_subscription += 1
        self._subscribers[token] = (ticket_filter, callback)

        async def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    async def _publish(self, ticket: Ticket) -> None:
        for ticket_filter, callback in list(self._subscribers.values()):
            if not ticket_filter.matches(ticket):
                continue
            try:
                await callback(copy.deepcopy(ticket))
            except Exception:
                logger.exception("Ticket subscriber failed for ticket %s", ticket.id)


class PostgresTicketStore:
    """Persist ticket aggregates as JSONB documents guarded by a version column."""

    NOTIFY_CHANNEL = "ticket_changes"

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        building_id TEXT NOT NULL,
        status TEXT NOT NULL,
        requested_by TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 0,
        document JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_INDEX_SQL = """
    CREATE INDEX IF NOT EXISTS tickets_building_status_idx ON tickets (building_id, status)
    """

    _INSERT_TICKET_SQL = """
    INSERT INTO tickets (id, building_id, status, requested_by, version, document, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
    ON CONFLICT (id) DO NOTHING
    RETURNING id
    """

    _SELECT_TICKET_SQL = """
    SELECT id, version, document
    FROM tickets
    WHERE id = $1
    """

    _SELECT_TICKET_FOR_UPDATE_SQL = """
    SELECT id, version, document
    FROM tickets
    WHERE id = $1
    FOR UPDATE
    """

    _UPDATE_TICKET_SQL = """
    UPDATE tickets
    SET status = $2,
        version = $3,
        document = $4::jsonb,
        updated_at = $5
    WHERE id = $1 AND version = $6
    """

    _NOTIFY_SQL = "SELECT pg_notify($1, $2)"

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_INDEX_SQL)

    async def create(self, ticket: Ticket) -> Ticket:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._INSERT_TICKET_SQL,
                ticket.id,
                ticket.building_id,
                ticket.status.value,
                ticket.requested_by,
                ticket.version,
                _dump_document(ticket),
                ticket.created_at,
                ticket.updated_at,
            )
            if row is None:
                raise ConflictError(f"Ticket {ticket.id} already exists")
            await connection.execute(self._NOTIFY_SQL, self.NOTIFY_CHANNEL, ticket.id)
        return ticket

    async def get(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def transactional_update(self, ticket_id: str, mutation: TicketMutation) -> Ticket:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(self._SELECT_TICKET_FOR_UPDATE_SQL, ticket_id)
                if row is None:
                    raise NotFoundError(f"Ticket {ticket_id} not found")
                expected_version = int(row["version"])
                updated = mutation(self._row_to_ticket(row))
                updated.version = expected_version + 1
                result = await connection.execute(
                    self._UPDATE_TICKET_SQL,
                    ticket_id,
                    updated.status.value,
                    updated.version,
                    _dump_document(updated),
                    updated.updated_at,
                    expected_version,
                )
                if not _affected_one(result):
                    raise ConflictError(f"Ticket {ticket_id} was modified concurrently")
                await connection.execute(self._NOTIFY_SQL, self.NOTIFY_CHANNEL, ticket_id)
        return updated

    async def query(self, ticket_filter: TicketFilter | None = None) -> list[Ticket]:
        ticket_filter = ticket_filter or TicketFilter()
        clauses: list[str] = []
        args: list[Any] = []
        if ticket_filter.status is not None:
            args.append(ticket_filter.status.value)
            clauses.append(f"status = ${len(args)}")
        if ticket_filter.building_ids is not None and "*" not in ticket_filter.building_ids:
            args.append(sorted(ticket_filter.building_ids))
            clauses.append(f"building_id = ANY(${len(args)}::text[])")
        if ticket_filter.requested_by is not None:
            args.append(ticket_filter.requested_by)
            clauses.append(f"requested_by = ${len(args)}")

        sql = "SELECT id, version, document FROM tickets"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC"

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(sql, *args)
        return [self._row_to_ticket(row) for row in rows]

    async def subscribe(self, ticket_filter: TicketFilter, callback: TicketCallback) -> Unsubscribe:
        connection = await self._pool.acquire()
        tasks: set[asyncio.Task[None]] = set()

        async def dispatch(ticket_id: str) -> None:
            ticket = await self.get(ticket_id)
            if ticket is None or not ticket_filter.matches(ticket):
                return
            try:
                await callback(ticket)
            except Exception:
                logger.exception("Ticket subscriber failed for ticket %s", ticket_id)

        def listener(_connection: Any, _pid: int, _channel: str, payload: str) -> None:
            task = asyncio.get_running_loop().create_task(dispatch(payload))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

        await connection.add_listener(self.NOTIFY_CHANNEL, listener)

        async def unsubscribe() -> None:
            try:
                await connection.remove_listener(self.NOTIFY_CHANNEL, listener)
            finally:
                await self._pool.release(connection)

        return unsubscribe

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        document = row["document"]
        if isinstance(document, str):
            document = json.loads(document)
        ticket = document_to_ticket(document)
        ticket.version = int(row["version"])
        return ticket


def _dump_document(ticket: Ticket) -> str:
    # Activity metadata is free-form; values JSON cannot encode are stored as text.
    return json.dumps(ticket_to_document(ticket), default=str)


def _affected_one(result: Any) -> bool:
    if isinstance(result, str):
        return result.strip().endswith(" 1")
    return bool(result)


def _dump_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _ensure_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dump_money(value: Money | None) -> dict[str, str] | None:
    if value is None:
        return None
    return {"amount": str(value.amount), "currency": value.currency}


def _load_money(value: Mapping[str, Any] | None) -> Money | None:
    if not value:
        return None
    return Money(amount=Decimal(str(value["amount"])), currency=str(value["currency"]))


def ticket_to_document(ticket: Ticket) -> dict[str, Any]:
    """Serialise a ticket aggregate into a JSON-compatible document."""

    return {
        "id": ticket.id,
        "title": ticket.title,
        "description": ticket.description,
        "location": ticket.location,
        "urgency": ticket.urgency.value,
        "building_id": ticket.building_id,
        "requested_by": ticket.requested_by,
        "assigned_to": ticket.assigned_to,
        "status": ticket.status.value,
        "scheduled_date": _dump_datetime(ticket.scheduled_date),
        "completed_date": _dump_datetime(ticket.completed_date),
        "created_at": _dump_datetime(ticket.created_at),
        "updated_at": _dump_datetime(ticket.updated_at),
        "quote_requests": [
            {
                "id": request.id,
                "supplier_id": request.supplier_id,
                "supplier_name": request.supplier_name,
                "status": request.status.value,
                "sent_at": _dump_datetime(request.sent_at),
                "updated_at": _dump_datetime(request.updated_at),
                "quote_amount": _dump_money(request.quote_amount),
                "notes": request.notes,
                "valid_until": _dump_datetime(request.valid_until),
                "is_winner": request.is_winner,
                "rejection_reason": request.rejection_reason,
            }
            for request in ticket.quote_requests
        ],
        "activity_log": [
            {
                "id": entry.id,
                "action": entry.action,
                "description": entry.description,
                "performed_by": entry.performed_by,
                "timestamp": _dump_datetime(entry.timestamp),
                "metadata": entry.metadata,
            }
            for entry in ticket.activity_log
        ],
        "comments": [
            {
                "id": comment.id,
                "ticket_id": comment.ticket_id,
                "author_id": comment.author_id,
                "author_role": comment.author_role.value,
                "content": comment.content,
                "created_at": _dump_datetime(comment.created_at),
            }
            for comment in ticket.comments
        ],
    }


def document_to_ticket(document: Mapping[str, Any]) -> Ticket:
    return Ticket(
        id=str(document["id"]),
        title=str(document["title"]),
        description=str(document.get("description") or ""),
        location=str(document.get("location") or ""),
        urgency=Urgency(str(document.get("urgency") or Urgency.MEDIUM.value)),
        building_id=str(document["building_id"]),
        requested_by=str(document["requested_by"]),
        assigned_to=document.get("assigned_to"),
        status=TicketStatus(str(document["status"])),
        scheduled_date=_ensure_datetime(document.get("scheduled_date")),
        completed_date=_ensure_datetime(document.get("completed_date")),
        created_at=_ensure_datetime(document["created_at"]),
        updated_at=_ensure_datetime(document["updated_at"]),
        quote_requests=[
            QuoteRequest(
                id=str(item["id"]),
                supplier_id=str(item["supplier_id"]),
                supplier_name=str(item.get("supplier_name") or ""),
                status=QuoteRequestStatus(str(item["status"])),
                sent_at=_ensure_datetime(item["sent_at"]),
                updated_at=_ensure_datetime(item["updated_at"]),
                quote_amount=_load_money(item.get("quote_amount")),
                notes=item.get("notes"),
                valid_until=_ensure_datetime(item.get("valid_until")),
                is_winner=bool(item.get("is_winner", False)),
                rejection_reason=item.get("rejection_reason"),
            )
            for item in document.get("quote_requests") or []
        ],
        activity_log=[
            ActivityLogEntry(
                id=str(item["id"]),
                action=str(item["action"]),
                description=str(item.get("description") or ""),
                performed_by=str(item["performed_by"]),
                timestamp=_ensure_datetime(item["timestamp"]),
                metadata=dict(item.get("metadata") or {}),
            )
            for item in document.get("activity_log") or []
        ],
        comments=[
            Comment(
                id=str(item["id"]),
                ticket_id=str(item["ticket_id"]),
                author_id=str(item["author_id"]),
                author_role=ActorRole(str(item["author_role"])),
                content=str(item["content"]),
                created_at=_ensure_datetime(item["created_at"]),
            )
            for item in document.get("comments") or []
        ],
    )
