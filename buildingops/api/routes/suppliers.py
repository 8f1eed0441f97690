from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from buildingops.api.schemas import SupplierResponse
from buildingops.dependencies.tickets import ManagerUser, SupplierDirectoryDep

router = APIRouter(prefix="/suppliers", tags=["suppliers"])


@router.get("", response_model=list[SupplierResponse])
async def list_suppliers(
    directory: SupplierDirectoryDep,
    _: ManagerUser,
    specialty: str | None = Query(default=None),
    active_only: bool = Query(default=True),
) -> list[SupplierResponse]:
    suppliers = await directory.list_suppliers(specialty=specialty, active_only=active_only)
    return [SupplierResponse.model_validate(supplier) for supplier in suppliers]


@router.get("/{supplier_id}", response_model=SupplierResponse)
async def get_supplier(supplier_id: str, directory: SupplierDirectoryDep, _: ManagerUser) -> SupplierResponse:
    supplier = await directory.get_supplier(supplier_id)
    if supplier is None:
        raise HTTPException(status_code=404, detail=f"Supplier {supplier_id} not found")
    return SupplierResponse.model_validate(supplier)
