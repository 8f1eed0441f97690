from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from buildingops.tickets.collaborators import InMemoryScheduler, InMemorySupplierDirectory
from buildingops.tickets.models import Supplier, Ticket, Urgency
from buildingops.tickets.permissions import StaticBuildingMembershipResolver
from buildingops.tickets.repository import InMemoryTicketStore
from buildingops.tickets.service import TicketService
from buildingops.tickets.state import TicketStatus


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = fail

    async def notify(self, actor_id: str, message: str) -> None:
        if self.fail:
            raise ConnectionError("mail relay unavailable")
        self.sent.append((actor_id, message))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def suppliers() -> list[Supplier]:
    return [
        Supplier(id="supA", name="Acme Plumbing", specialties=["plumbing"], rating=4.5),
        Supplier(id="supB", name="Bright Sparks", specialties=["electrical"], rating=4.1),
        Supplier(id="supC", name="Clear Drains", specialties=["plumbing"], is_active=False),
    ]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def scheduler() -> InMemoryScheduler:
    return InMemoryScheduler()


@pytest.fixture
def store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def service(store, suppliers, scheduler, notifier, clock) -> TicketService:
    return TicketService(
        store,
        suppliers=InMemorySupplierDirectory(suppliers),
        scheduler=scheduler,
        notifier=notifier,
        memberships=StaticBuildingMembershipResolver({"m1": ["b1"], "m-all": ["*"]}),
        clock=clock,
    )


def make_ticket(
    *,
    ticket_id: str = "t1",
    status: TicketStatus = TicketStatus.NEW,
    building_id: str = "b1",
    requested_by: str = "r1",
    now: datetime | None = None,
) -> Ticket:
    now = now or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    return Ticket(
        id=ticket_id,
        title="Leaking tap",
        description="Kitchen tap drips constantly",
        location="Flat 4",
        urgency=Urgency.MEDIUM,
        building_id=building_id,
        requested_by=requested_by,
        status=status,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def ticket_factory():
    return make_ticket


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)
