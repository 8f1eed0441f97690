from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Iterator

from opentelemetry import trace

from .activity import ActivityLogRecorder, Clock, utcnow
from .collaborators import CalendarWindow, NotificationSink, SchedulingCollaborator, SupplierDirectory
from .errors import CollaboratorUnavailableError, NotFoundError, PermissionDeniedError, ValidationError
from .lifecycle import TicketLifecycle
from .models import (
    ActivityLogEntry,
    Actor,
    ActorRole,
    Comment,
    QuoteSummary,
    Supplier,
    Ticket,
    TicketFilter,
    Urgency,
)
from .permissions import BuildingMembershipResolver, StaticBuildingMembershipResolver, can_comment, can_view
from .quotes import QuoteRequestLedger, to_money
from .repository import TicketStore
from .state import TicketStateMachine, TicketStatus, TicketTrigger

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class OperationResult:
    """Committed ticket state plus warnings from best-effort side effects."""

    ticket: Ticket
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _SideEffect:
    description: str
    run: Callable[[], Awaitable[Any]]


class TicketService:
    """High level orchestration for the maintenance ticket workflow.

    Every mutating call runs its domain logic inside the store's transactional update.
    Notifications and calendar updates are queued while the mutation runs and only
    dispatched after the write committed; their failures are logged and reported as
    warnings instead of failing the call.
    """

    def __init__(
        self,
        store: TicketStore,
        *,
        suppliers: SupplierDirectory,
        scheduler: SchedulingCollaborator | None = None,
        notifier: NotificationSink | None = None,
        memberships: BuildingMembershipResolver | None = None,
        clock: Clock | None = None,
        default_currency: str = "GBP",
        schedule_window_minutes: int = 120,
    ) -> None:
        self._store = store
        self._suppliers = suppliers
        self._scheduler = scheduler
        self._notifier = notifier
        self._memberships = memberships or StaticBuildingMembershipResolver()
        self._clock = clock or utcnow
        self._recorder = ActivityLogRecorder(clock=self._clock)
        self._lifecycle = TicketLifecycle(self._recorder, clock=self._clock)
        self._ledger = QuoteRequestLedger(self._lifecycle, clock=self._clock)
        self._default_currency = default_currency
        self._schedule_window_minutes = schedule_window_minutes

    async def ensure_schema(self) -> None:
        await self._store.ensure_schema()

    # Intake and reads

    async def create_ticket(
        self,
        *,
        title: str,
        description: str,
        location: str,
        building_id: str,
        requested_by: str,
        urgency: Urgency = Urgency.MEDIUM,
    ) -> Ticket:
        if not title or not title.strip():
            raise ValidationError("Ticket title is required")
        if not building_id:
            raise ValidationError("Ticket building is required")

        now = self._clock()
        ticket = Ticket(
            id=str(uuid.uuid4()),
            title=title.strip(),
            description=description,
            location=location,
            urgency=urgency,
            building_id=building_id,
            requested_by=requested_by,
            status=TicketStateMachine.initial_state(),
            created_at=now,
            updated_at=now,
        )
        self._recorder.record(
            ticket,
            action="Ticket Created",
            description="Ticket created by user",
            performed_by=requested_by,
        )
        created = await self._store.create(ticket)
        logger.info("Ticket %s created in building %s by %s", created.id, building_id, requested_by)
        return created

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._store.get(ticket_id)
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(self, ticket_filter: TicketFilter | None = None) -> list[Ticket]:
        return await self._store.query(ticket_filter)

    async def list_visible_tickets(self, actor: Actor, *, ticket_filter: TicketFilter | None = None) -> list[Ticket]:
        """List tickets ``actor`` may see: their buildings for managers, their own for residents."""

        base = ticket_filter or TicketFilter()
        if actor.role == ActorRole.MANAGER:
            building_ids = await self._memberships.get_accessible_building_ids(actor)
            scoped = TicketFilter(status=base.status, building_ids=building_ids, requested_by=base.requested_by)
        elif actor.role == ActorRole.RESIDENT:
            scoped = TicketFilter(status=base.status, building_ids=base.building_ids, requested_by=actor.id)
        else:
            return []
        return await self._store.query(scoped)

    async def get_activity_log(self, ticket_id: str) -> list[ActivityLogEntry]:
        ticket = await self.get_ticket(ticket_id)
        return self._recorder.entries(ticket)

    async def quote_summary(self, ticket_id: str) -> QuoteSummary:
        ticket = await self.get_ticket(ticket_id)
        return self._ledger.summary(ticket)

    # Quote request ledger

    async def request_quotes(
        self,
        ticket_id: str,
        supplier_ids: Iterable[str],
        *,
        requested_by: str,
    ) -> OperationResult:
        unique_ids = list(dict.fromkeys(supplier_ids))
        if not unique_ids:
            raise ValidationError("At least one supplier must be selected")
        suppliers = await self._resolve_suppliers(unique_ids)

        effects: list[_SideEffect] = []

        def mutate(ticket: Ticket) -> Ticket:
            previous = ticket.status
            batch = self._ledger.request_quotes(ticket, suppliers, requested_by=requested_by)
            for request in batch.created:
                effects.append(
                    self._notification(
                        request.supplier_id,
                        f"You have been asked to quote for '{ticket.title}' at {ticket.location}",
                    )
                )
            if batch.status_changed:
                effects.extend(self._status_notifications(ticket, previous))
            return ticket

        with self._span("request_quotes", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        return OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    async def record_quote_amount(
        self,
        ticket_id: str,
        supplier_id: str,
        amount: Decimal | int | str,
        *,
        actor: str,
        notes: str | None = None,
        valid_until: datetime | None = None,
        currency: str | None = None,
    ) -> OperationResult:
        money = to_money(amount, currency or self._default_currency)

        def mutate(ticket: Ticket) -> Ticket:
            self._ledger.record_quote_amount(
                ticket,
                supplier_id,
                money,
                actor=actor,
                notes=notes,
                valid_until=valid_until,
            )
            return ticket

        with self._span("record_quote_amount", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        return OperationResult(ticket=ticket)

    async def accept_quote(self, ticket_id: str, supplier_id: str, *, actor: str) -> OperationResult:
        effects: list[_SideEffect] = []

        def mutate(ticket: Ticket) -> Ticket:
            previous = ticket.status
            acceptance = self._ledger.accept_quote(ticket, supplier_id, actor=actor)
            effects.append(
                self._notification(acceptance.winner.supplier_id, f"Your quote for '{ticket.title}' was accepted")
            )
            for request in acceptance.rejected:
                effects.append(
                    self._notification(
                        request.supplier_id,
                        f"Your quote for '{ticket.title}' was not selected: {request.rejection_reason}",
                    )
                )
            effects.extend(self._status_notifications(ticket, previous))
            return ticket

        with self._span("accept_quote", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        logger.info("Ticket %s accepted quote from supplier %s", ticket_id, supplier_id)
        return OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    async def reject_quote(self, ticket_id: str, supplier_id: str, reason: str, *, actor: str) -> OperationResult:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        effects: list[_SideEffect] = []

        def mutate(ticket: Ticket) -> Ticket:
            request = self._ledger.reject_quote(ticket, supplier_id, reason, actor=actor)
            effects.append(
                self._notification(
                    request.supplier_id,
                    f"Your quote for '{ticket.title}' was rejected: {request.rejection_reason}",
                )
            )
            return ticket

        with self._span("reject_quote", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        return OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    async def withdraw_quote_request(self, ticket_id: str, supplier_id: str, *, actor: str) -> OperationResult:
        effects: list[_SideEffect] = []

        def mutate(ticket: Ticket) -> Ticket:
            request = self._ledger.withdraw_quote_request(ticket, supplier_id, actor=actor)
            effects.append(
                self._notification(request.supplier_id, f"The quote request for '{ticket.title}' was withdrawn")
            )
            return ticket

        with self._span("withdraw_quote_request", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        return OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    # Status machine

    async def schedule_work(
        self,
        ticket_id: str,
        scheduled_for: datetime,
        *,
        actor: str,
        duration_minutes: int | None = None,
    ) -> OperationResult:
        if scheduled_for.tzinfo is None:
            scheduled_for = scheduled_for.replace(tzinfo=timezone.utc)
        if scheduled_for < self._clock():
            raise ValidationError("Scheduled date cannot be in the past")
        minutes = duration_minutes or self._schedule_window_minutes
        if minutes <= 0:
            raise ValidationError("Scheduled duration must be positive")
        window = CalendarWindow.starting_at(scheduled_for, minutes=minutes)
        effects: list[_SideEffect] = []

        def mutate(ticket: Ticket) -> Ticket:
            previous = ticket.status
            self._lifecycle.fire(
                ticket,
                TicketTrigger.SCHEDULE_WORK,
                actor=actor,
                metadata={"scheduled_date": scheduled_for.isoformat()},
            )
            ticket.scheduled_date = scheduled_for
            if self._scheduler is not None:
                scheduler = self._scheduler
                snapshot = ticket
                effects.append(
                    _SideEffect(
                        description="calendar entry creation",
                        run=lambda: scheduler.create_calendar_entry(snapshot, window, actor=actor),
                    )
                )
            effects.extend(self._status_notifications(ticket, previous))
            return ticket

        with self._span("schedule_work", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        return OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    async def start_work(self, ticket_id: str, *, actor: str) -> OperationResult:
        return await self._transition(ticket_id, TicketTrigger.START_WORK, actor=actor)

    async def mark_complete(self, ticket_id: str, *, actor: str) -> OperationResult:
        def completed(ticket: Ticket) -> None:
            ticket.completed_date = ticket.updated_at

        effects: list[_SideEffect] = []
        if self._scheduler is not None:
            scheduler = self._scheduler
            effects.append(
                _SideEffect(
                    description="calendar entry completion",
                    run=lambda: scheduler.complete_calendar_entries(ticket_id),
                )
            )
        return await self._transition(
            ticket_id, TicketTrigger.MARK_COMPLETE, actor=actor, apply=completed, extra_effects=effects
        )

    async def close(self, ticket_id: str, *, actor: str) -> OperationResult:
        return await self._transition(ticket_id, TicketTrigger.CLOSE, actor=actor)

    async def cancel(self, ticket_id: str, reason: str, *, actor: str) -> OperationResult:
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        effects: list[_SideEffect] = []
        if self._scheduler is not None:
            scheduler = self._scheduler
            effects.append(
                _SideEffect(
                    description="calendar entry cancellation",
                    run=lambda: scheduler.cancel_calendar_entries(ticket_id),
                )
            )
        return await self._transition(
            ticket_id,
            TicketTrigger.CANCEL,
            actor=actor,
            metadata={"reason": reason.strip()},
            extra_effects=effects,
        )

    # Comments

    async def can_comment(self, ticket_id: str, actor: Actor) -> bool:
        ticket = await self.get_ticket(ticket_id)
        building_ids = await self._memberships.get_accessible_building_ids(actor)
        return can_comment(ticket, actor, building_ids)

    async def add_comment(self, ticket_id: str, *, actor: Actor, content: str) -> tuple[Comment, OperationResult]:
        if not content or not content.strip():
            raise ValidationError("Comment content is required")
        building_ids = await self._memberships.get_accessible_building_ids(actor)
        effects: list[_SideEffect] = []
        comment_id = f"comment-{uuid.uuid4().hex}"

        def mutate(ticket: Ticket) -> Ticket:
            if not can_comment(ticket, actor, building_ids):
                raise PermissionDeniedError(f"{actor.id} may not comment on ticket {ticket.id}")
            now = self._clock()
            ticket.comments.append(
                Comment(
                    id=comment_id,
                    ticket_id=ticket.id,
                    author_id=actor.id,
                    author_role=actor.role,
                    content=content.strip(),
                    created_at=now,
                )
            )
            ticket.updated_at = now
            self._recorder.record(
                ticket,
                action="Comment Added",
                description=f"Comment added by {actor.role.value}",
                performed_by=actor.id,
                metadata={"comment_id": comment_id},
            )
            if ticket.requested_by != actor.id:
                effects.append(self._notification(ticket.requested_by, f"New comment on '{ticket.title}'"))
            return ticket

        with self._span("add_comment", ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        added = next(comment for comment in ticket.comments if comment.id == comment_id)
        return added, OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    async def get_visible_ticket(self, ticket_id: str, *, actor: Actor) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        building_ids = await self._memberships.get_accessible_building_ids(actor)
        if not can_view(ticket, actor, building_ids):
            raise PermissionDeniedError(f"{actor.id} may not view ticket {ticket_id}")
        return ticket

    async def list_comments(self, ticket_id: str, *, actor: Actor) -> list[Comment]:
        ticket = await self.get_visible_ticket(ticket_id, actor=actor)
        return sorted(ticket.comments, key=lambda comment: comment.created_at)

    # Internals

    async def _transition(
        self,
        ticket_id: str,
        trigger: TicketTrigger,
        *,
        actor: str,
        metadata: dict[str, Any] | None = None,
        apply: Callable[[Ticket], None] | None = None,
        extra_effects: list[_SideEffect] | None = None,
    ) -> OperationResult:
        effects: list[_SideEffect] = []

        def mutate(ticket: Ticket) -> Ticket:
            previous = ticket.status
            self._lifecycle.fire(ticket, trigger, actor=actor, metadata=metadata)
            if apply is not None:
                apply(ticket)
            effects.extend(extra_effects or [])
            effects.extend(self._status_notifications(ticket, previous))
            return ticket

        with self._span(trigger.value, ticket_id):
            ticket = await self._store.transactional_update(ticket_id, mutate)
        return OperationResult(ticket=ticket, warnings=await self._dispatch(effects))

    async def _resolve_suppliers(self, supplier_ids: list[str]) -> list[Supplier]:
        suppliers: list[Supplier] = []
        missing: list[str] = []
        for supplier_id in supplier_ids:
            supplier = await self._suppliers.get_supplier(supplier_id)
            if supplier is None:
                missing.append(supplier_id)
            else:
                suppliers.append(supplier)
        if missing:
            raise NotFoundError(f"Unknown supplier(s): {', '.join(missing)}")
        return suppliers

    def _notification(self, actor_id: str, message: str) -> _SideEffect:
        notifier = self._notifier

        async def send() -> None:
            if notifier is not None:
                await notifier.notify(actor_id, message)

        return _SideEffect(description=f"notification to {actor_id}", run=send)

    def _status_notifications(self, ticket: Ticket, previous: TicketStatus) -> list[_SideEffect]:
        if ticket.status == previous:
            return []
        return [
            self._notification(
                ticket.requested_by,
                f"Ticket '{ticket.title}' moved from {previous.value} to {ticket.status.value}",
            )
        ]

    async def _dispatch(self, effects: list[_SideEffect]) -> list[str]:
        warnings: list[str] = []
        for effect in effects:
            try:
                await effect.run()
            except Exception as exc:
                error = exc if isinstance(exc, CollaboratorUnavailableError) else CollaboratorUnavailableError(str(exc))
                logger.warning("Best-effort %s failed: %s", effect.description, error, exc_info=True)
                warnings.append(f"{effect.description} failed: {error}")
        return warnings

    @contextmanager
    def _span(self, operation: str, ticket_id: str) -> Iterator[None]:
        with tracer.start_as_current_span(f"tickets.{operation}") as span:
            span.set_attribute("ticket.id", ticket_id)
            yield
