"""
Approval API Endpoints - KPI approval workflow.

Implements:
- GET    /api/v1/kpis/pending                 - List KPIs awaiting a decision
- POST   /api/v1/kpis/{id}/approve            - Approve (optionally with edits)
- POST   /api/v1/kpis/{id}/reject             - Move to the rejected store
- PATCH  /api/v1/kpis/{id}                    - Edit a pending KPI
- DELETE /api/v1/kpis/{id}                    - Delete a pending KPI
- GET    /api/v1/rejected                     - List rejected KPIs
- POST   /api/v1/rejected/{id}/restore        - Restore to pending
- POST   /api/v1/rejected/{id}/approve        - Restore and approve
- PATCH  /api/v1/rejected/{id}                - Edit a rejected KPI
- DELETE /api/v1/rejected/{id}                - Delete a rejected KPI
- POST   /api/v1/bulk                         - Apply one transition to many KPIs
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from kpi_recon.api.dependencies import get_container, get_identity
from kpi_recon.container import ServiceContainer
from kpi_recon.domain.entities import KPIRecord, SessionIdentity
from kpi_recon.domain.exceptions import StoreError
from kpi_recon.domain.services import BulkOperation, BulkOptions, BulkScope, OperationResult

router = APIRouter()

ERROR_STATUS = {
    "KPI_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "REJECTED_KPI_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VALIDATION_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "STORE_ERROR": status.HTTP_502_BAD_GATEWAY,
    "TRANSITION_ROLLED_BACK": status.HTTP_409_CONFLICT,
    "POSSIBLE_DUPLICATE": status.HTTP_409_CONFLICT,
    "PARTIAL_FAILURE": status.HTTP_409_CONFLICT,
}


# =============================================================================
# Pydantic Models
# =============================================================================

class ApproveRequest(BaseModel):
    """Request model for approving a KPI."""
    edited_fields: Optional[Dict[str, Any]] = Field(None, description="Fields to change before approving")


class RejectRequest(BaseModel):
    """Request model for rejecting a KPI."""
    reason: Optional[str] = Field(None, max_length=2000, description="Rejection reason")


class UpdateRequest(BaseModel):
    """Request model for editing a KPI."""
    fields: Dict[str, Any] = Field(..., description="Canonical or legacy field names to new values")


class BulkRequest(BaseModel):
    """Request model for a bulk transition."""
    operation: BulkOperation
    ids: Optional[List[str]] = Field(None, description="Explicit ids; all matching rows when omitted")
    reason: Optional[str] = Field(None, description="Rejection reason for bulk reject")
    pending_only: bool = True
    page_size: Optional[int] = Field(None, gt=0)
    batch_size: Optional[int] = Field(None, gt=0)


class OperationResponse(BaseModel):
    """Response for a single transition."""
    success: bool
    message: str
    code: str
    details: Dict[str, Any] = {}


class KPIListResponse(BaseModel):
    """Response for KPI listings."""
    items: List[Dict[str, Any]]
    total: int


class BulkResponse(BaseModel):
    """Response for a bulk transition."""
    operation: str
    succeeded: int
    failed: List[str]
    errors: Dict[str, str]
    processed: int
    batches: int
    cancelled: bool
    aggregates: List[Dict[str, Any]]


# =============================================================================
# Helpers
# =============================================================================

def jsonable(value: Any) -> Any:
    """Decimals become strings so quantities keep their exact value."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [jsonable(v) for v in value]
    return value


def record_dict(record: KPIRecord) -> Dict[str, Any]:
    return jsonable(record.to_dict())


def respond(result: OperationResult) -> OperationResponse:
    """Return the result, or raise with the status its code maps to."""
    payload = jsonable(result.to_dict())
    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.code, status.HTTP_400_BAD_REQUEST),
            detail=payload,
        )
    return OperationResponse(**payload)


async def _listing(fetch) -> KPIListResponse:
    try:
        records = await fetch()
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return KPIListResponse(items=[record_dict(r) for r in records], total=len(records))


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/kpis/pending", response_model=KPIListResponse, summary="List KPIs awaiting approval")
async def list_pending(container: ServiceContainer = Depends(get_container)):
    return await _listing(container.approvals().fetch_pending)


@router.post("/kpis/{kpi_id}/approve", response_model=OperationResponse, summary="Approve a KPI")
async def approve_kpi(
    kpi_id: str,
    body: Optional[ApproveRequest] = None,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    edited = body.edited_fields if body else None
    return respond(await container.approvals().approve(kpi_id, identity, edited))


@router.post("/kpis/{kpi_id}/reject", response_model=OperationResponse, summary="Reject a KPI")
async def reject_kpi(
    kpi_id: str,
    body: Optional[RejectRequest] = None,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    reason = body.reason if body else None
    return respond(await container.approvals().reject(kpi_id, reason, identity))


@router.patch("/kpis/{kpi_id}", response_model=OperationResponse, summary="Edit a pending KPI")
async def update_kpi(
    kpi_id: str,
    body: UpdateRequest,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    return respond(await container.approvals().update_pending(kpi_id, body.fields, identity))


@router.delete("/kpis/{kpi_id}", response_model=OperationResponse, summary="Delete a pending KPI")
async def delete_kpi(kpi_id: str, container: ServiceContainer = Depends(get_container)):
    return respond(await container.approvals().delete_pending(kpi_id))


@router.get("/rejected", response_model=KPIListResponse, summary="List rejected KPIs")
async def list_rejected(container: ServiceContainer = Depends(get_container)):
    return await _listing(container.approvals().fetch_rejected)


@router.post("/rejected/{rejected_id}/restore", response_model=OperationResponse, summary="Restore a rejected KPI")
async def restore_kpi(
    rejected_id: str,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    return respond(await container.approvals().restore(rejected_id, identity))


@router.post("/rejected/{rejected_id}/approve", response_model=OperationResponse, summary="Restore and approve a rejected KPI")
async def approve_rejected_kpi(
    rejected_id: str,
    body: Optional[ApproveRequest] = None,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    edited = body.edited_fields if body else None
    return respond(await container.approvals().approve_rejected(rejected_id, identity, edited))


@router.patch("/rejected/{rejected_id}", response_model=OperationResponse, summary="Edit a rejected KPI")
async def update_rejected_kpi(
    rejected_id: str,
    body: UpdateRequest,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    return respond(await container.approvals().update_rejected(rejected_id, body.fields, identity))


@router.delete("/rejected/{rejected_id}", response_model=OperationResponse, summary="Delete a rejected KPI")
async def delete_rejected_kpi(rejected_id: str, container: ServiceContainer = Depends(get_container)):
    return respond(await container.approvals().delete_rejected(rejected_id))


@router.post("/bulk", response_model=BulkResponse, summary="Apply a transition to many KPIs")
async def bulk_apply(
    body: BulkRequest,
    container: ServiceContainer = Depends(get_container),
    identity: SessionIdentity = Depends(get_identity),
):
    """
    Run a bulk transition.

    Per-item failures are reported in `failed`/`errors`; the request itself
    only fails when the scope cannot be fetched.
    """
    scope = BulkScope(ids=body.ids, pending_only=body.pending_only)
    options = BulkOptions(
        page_size=body.page_size,
        batch_size=body.batch_size,
        reason=body.reason,
        identity=identity,
    )
    try:
        result = await container.bulk().bulk_apply(body.operation, scope, options)
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return BulkResponse(**jsonable(result.to_dict()))
