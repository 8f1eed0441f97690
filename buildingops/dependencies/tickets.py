from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from buildingops.dependencies.auth import Role, User, role_required
from buildingops.tickets.collaborators import SupplierDirectory
from buildingops.tickets.service import TicketService

require_manager = role_required(Role.MANAGER)
require_member = role_required(Role.MANAGER, Role.RESIDENT)

ManagerUser = Annotated[User, Depends(require_manager)]
MemberUser = Annotated[User, Depends(require_member)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_supplier_directory(request: Request) -> SupplierDirectory:
    directory = getattr(request.app.state, "supplier_directory", None)
    if directory is None:
        raise HTTPException(status_code=503, detail="Supplier directory is not configured")
    return directory


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
SupplierDirectoryDep = Annotated[SupplierDirectory, Depends(get_supplier_directory)]
