from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from buildingops.api.display import display_label
from buildingops.tickets.models import ActorRole, QuoteRequestStatus, Ticket, Urgency
from buildingops.tickets.service import OperationResult
from buildingops.tickets.state import TicketStatus


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=10_000)
    location: str = Field(default="", max_length=255)
    urgency: Urgency = Urgency.MEDIUM
    building_id: str = Field(..., min_length=1)


class QuoteRequestCreate(BaseModel):
    supplier_ids: list[str] = Field(..., min_length=1)


class QuoteAmountRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    notes: str | None = Field(default=None, max_length=2_000)
    valid_until: datetime | None = None


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ScheduleRequest(BaseModel):
    scheduled_for: datetime
    duration_minutes: int | None = Field(default=None, gt=0)


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5_000)


class MoneyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: Decimal
    currency: str


class QuoteRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    supplier_id: str
    supplier_name: str
    status: QuoteRequestStatus
    sent_at: datetime
    updated_at: datetime
    quote_amount: MoneyResponse | None
    notes: str | None
    valid_until: datetime | None
    is_winner: bool
    rejection_reason: str | None


class ActivityEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    action: str
    description: str
    performed_by: str
    timestamp: datetime
    metadata: dict[str, Any]


class CommentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author_id: str
    author_role: ActorRole
    content: str
    created_at: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    location: str
    urgency: Urgency
    building_id: str
    requested_by: str
    assigned_to: str | None
    status: TicketStatus
    status_label: str = ""
    scheduled_date: datetime | None
    completed_date: datetime | None
    created_at: datetime
    updated_at: datetime
    version: int
    quote_requests: list[QuoteRequestResponse]


class OperationResponse(BaseModel):
    ticket: TicketResponse
    warnings: list[str]


class QuoteSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pending_count: int
    received_count: int
    accepted_count: int
    best_price: MoneyResponse | None


class SupplierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    company_name: str
    specialties: list[str]
    rating: float | None
    is_active: bool


def to_ticket_response(ticket: Ticket) -> TicketResponse:
    response = TicketResponse.model_validate(ticket)
    return response.model_copy(update={"status_label": display_label(ticket)})


def to_operation_response(result: OperationResult) -> OperationResponse:
    return OperationResponse(ticket=to_ticket_response(result.ticket), warnings=list(result.warnings))
