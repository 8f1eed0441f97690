from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from buildingops.api.display import parse_status_label
from buildingops.api.errors import service_errors
from buildingops.api.schemas import (
    ActivityEntryResponse,
    OperationResponse,
    ReasonRequest,
    ScheduleRequest,
    TicketCreateRequest,
    TicketResponse,
    to_operation_response,
    to_ticket_response,
)
from buildingops.dependencies.tickets import ManagerUser, MemberUser, TicketServiceDep
from buildingops.tickets.models import TicketFilter

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep, user: MemberUser) -> TicketResponse:
    with service_errors():
        ticket = await service.create_ticket(
            title=payload.title,
            description=payload.description,
            location=payload.location,
            urgency=payload.urgency,
            building_id=payload.building_id,
            requested_by=user.user_id,
        )
    return to_ticket_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    user: MemberUser,
    status_filter: str | None = Query(default=None, alias="status"),
) -> list[TicketResponse]:
    ticket_filter = TicketFilter()
    if status_filter:
        try:
            ticket_filter = TicketFilter(status=parse_status_label(status_filter))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    tickets = await service.list_visible_tickets(user.to_actor(), ticket_filter=ticket_filter)
    return [to_ticket_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, user: MemberUser) -> TicketResponse:
    with service_errors():
        ticket = await service.get_visible_ticket(ticket_id, actor=user.to_actor())
    return to_ticket_response(ticket)


@router.get("/{ticket_id}/activity", response_model=list[ActivityEntryResponse])
async def get_ticket_activity(ticket_id: str, service: TicketServiceDep, user: MemberUser) -> list[ActivityEntryResponse]:
    with service_errors():
        await service.get_visible_ticket(ticket_id, actor=user.to_actor())
        entries = await service.get_activity_log(ticket_id)
    return [ActivityEntryResponse.model_validate(entry) for entry in entries]


@router.post("/{ticket_id}/schedule", response_model=OperationResponse)
async def schedule_work(
    ticket_id: str,
    payload: ScheduleRequest,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.schedule_work(
            ticket_id,
            payload.scheduled_for,
            actor=user.user_id,
            duration_minutes=payload.duration_minutes,
        )
    return to_operation_response(result)


@router.post("/{ticket_id}/start", response_model=OperationResponse)
async def start_work(ticket_id: str, service: TicketServiceDep, user: ManagerUser) -> OperationResponse:
    with service_errors():
        result = await service.start_work(ticket_id, actor=user.user_id)
    return to_operation_response(result)


@router.post("/{ticket_id}/complete", response_model=OperationResponse)
async def mark_complete(ticket_id: str, service: TicketServiceDep, user: ManagerUser) -> OperationResponse:
    with service_errors():
        result = await service.mark_complete(ticket_id, actor=user.user_id)
    return to_operation_response(result)


@router.post("/{ticket_id}/close", response_model=OperationResponse)
async def close_ticket(ticket_id: str, service: TicketServiceDep, user: ManagerUser) -> OperationResponse:
    with service_errors():
        result = await service.close(ticket_id, actor=user.user_id)
    return to_operation_response(result)


@router.post("/{ticket_id}/cancel", response_model=OperationResponse)
async def cancel_ticket(
    ticket_id: str,
    payload: ReasonRequest,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.cancel(ticket_id, payload.reason, actor=user.user_id)
    return to_operation_response(result)
