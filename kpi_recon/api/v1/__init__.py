"""
API v1 - REST endpoints for KPI approval and BOQ reconciliation.

Implements:
- Approval endpoints (list, approve, reject, edit, delete)
- Rejected endpoints (list, restore, approve, edit, delete)
- Bulk endpoint
- BOQ endpoints (recompute, context, quantity validation)
"""
from fastapi import APIRouter

from .approvals import router as approvals_router
from .boq import router as boq_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(approvals_router, tags=["Approvals"])
api_router.include_router(boq_router, prefix="/boq", tags=["BOQ"])
