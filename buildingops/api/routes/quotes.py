from __future__ import annotations

from fastapi import APIRouter

from buildingops.api.errors import service_errors
from buildingops.api.schemas import (
    OperationResponse,
    QuoteAmountRequest,
    QuoteRequestCreate,
    QuoteSummaryResponse,
    ReasonRequest,
    to_operation_response,
)
from buildingops.dependencies.tickets import ManagerUser, TicketServiceDep

router = APIRouter(prefix="/tickets/{ticket_id}/quote-requests", tags=["quotes"])


@router.post("", response_model=OperationResponse)
async def request_quotes(
    ticket_id: str,
    payload: QuoteRequestCreate,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.request_quotes(ticket_id, payload.supplier_ids, requested_by=user.user_id)
    return to_operation_response(result)


@router.get("/summary", response_model=QuoteSummaryResponse)
async def quote_summary(ticket_id: str, service: TicketServiceDep, _: ManagerUser) -> QuoteSummaryResponse:
    with service_errors():
        summary = await service.quote_summary(ticket_id)
    return QuoteSummaryResponse.model_validate(summary)


@router.post("/{supplier_id}/amount", response_model=OperationResponse)
async def record_quote_amount(
    ticket_id: str,
    supplier_id: str,
    payload: QuoteAmountRequest,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.record_quote_amount(
            ticket_id,
            supplier_id,
            payload.amount,
            actor=user.user_id,
            notes=payload.notes,
            valid_until=payload.valid_until,
            currency=payload.currency,
        )
    return to_operation_response(result)


@router.post("/{supplier_id}/accept", response_model=OperationResponse)
async def accept_quote(
    ticket_id: str,
    supplier_id: str,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.accept_quote(ticket_id, supplier_id, actor=user.user_id)
    return to_operation_response(result)


@router.post("/{supplier_id}/reject", response_model=OperationResponse)
async def reject_quote(
    ticket_id: str,
    supplier_id: str,
    payload: ReasonRequest,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.reject_quote(ticket_id, supplier_id, payload.reason, actor=user.user_id)
    return to_operation_response(result)


@router.post("/{supplier_id}/withdraw", response_model=OperationResponse)
async def withdraw_quote_request(
    ticket_id: str,
    supplier_id: str,
    service: TicketServiceDep,
    user: ManagerUser,
) -> OperationResponse:
    with service_errors():
        result = await service.withdraw_quote_request(ticket_id, supplier_id, actor=user.user_id)
    return to_operation_response(result)
