from __future__ import annotations

from fastapi import APIRouter, status

from buildingops.api.errors import service_errors
from buildingops.api.schemas import CommentCreateRequest, CommentResponse
from buildingops.dependencies.auth import CurrentUser
from buildingops.dependencies.tickets import TicketServiceDep

router = APIRouter(prefix="/tickets/{ticket_id}/comments", tags=["comments"])


@router.get("", response_model=list[CommentResponse])
async def list_comments(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> list[CommentResponse]:
    with service_errors():
        comments = await service.list_comments(ticket_id, actor=user.to_actor())
    return [CommentResponse.model_validate(comment) for comment in comments]


@router.post("", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> CommentResponse:
    with service_errors():
        comment, _ = await service.add_comment(ticket_id, actor=user.to_actor(), content=payload.content)
    return CommentResponse.model_validate(comment)


@router.get("/permission")
async def comment_permission(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> dict[str, bool]:
    with service_errors():
        allowed = await service.can_comment(ticket_id, user.to_actor())
    return {"can_comment": allowed}
