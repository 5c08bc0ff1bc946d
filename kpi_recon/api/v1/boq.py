"""
BOQ API Endpoints - Aggregate recompute and KPI context.

Implements:
- POST /api/v1/boq/recompute          - Recompute planned/actual units
- GET  /api/v1/boq/context            - BOQ row with its KPI totals
- GET  /api/v1/boq/validate-quantity  - Check a new quantity against BOQ planned units
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from kpi_recon.api.dependencies import get_container
from kpi_recon.api.v1.approvals import jsonable, record_dict
from kpi_recon.container import ServiceContainer
from kpi_recon.domain.exceptions import StoreError

router = APIRouter()


class RecomputeRequest(BaseModel):
    """Request model for recomputing one aggregate."""
    project_full_code: str = Field(..., min_length=1)
    activity_name: str = Field(..., min_length=1)


class AggregateResponse(BaseModel):
    project_full_code: str
    activity_name: str
    matched: bool
    planned_total: str
    actual_total: str
    boq_id: Optional[str]
    kpi_count: int
    success: bool
    message: str


class ContextResponse(BaseModel):
    boq: Optional[Dict[str, Any]]
    planned: List[Dict[str, Any]]
    actual: List[Dict[str, Any]]
    summary: Dict[str, Any]


class QuantityValidationResponse(BaseModel):
    valid: bool
    message: str
    details: Dict[str, Any]


@router.post("/recompute", response_model=AggregateResponse, summary="Recompute a BOQ aggregate")
async def recompute(body: RecomputeRequest, container: ServiceContainer = Depends(get_container)):
    """
    Recompute one activity. A missing BOQ row is reported with matched=false,
    not as an error.
    """
    result = await container.aggregator().recompute(body.project_full_code, body.activity_name)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=result.message)
    return AggregateResponse(**result.to_dict())


@router.get("/context", response_model=ContextResponse, summary="BOQ activity with its KPIs")
async def kpi_context(
    project_full_code: str = Query(..., min_length=1),
    activity_name: str = Query(..., min_length=1),
    container: ServiceContainer = Depends(get_container),
):
    try:
        context = await container.aggregator().kpi_context(project_full_code, activity_name)
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return ContextResponse(
        boq=jsonable(context.boq.to_dict()) if context.boq else None,
        planned=[record_dict(r) for r in context.planned],
        actual=[record_dict(r) for r in context.actual],
        summary=context.summary(),
    )


@router.get("/validate-quantity", response_model=QuantityValidationResponse, summary="Validate a KPI quantity")
async def validate_quantity(
    project_full_code: str = Query(..., min_length=1),
    activity_name: str = Query(..., min_length=1),
    quantity: Decimal = Query(...),
    is_actual: bool = Query(True),
    container: ServiceContainer = Depends(get_container),
):
    try:
        result = await container.aggregator().validate_quantity(
            project_full_code, activity_name, quantity, is_actual
        )
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return QuantityValidationResponse(
        valid=result.valid,
        message=result.message,
        details=jsonable(result.details),
    )
