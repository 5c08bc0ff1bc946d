"""
Domain Layer - KPI approval and BOQ reconciliation.

This module contains:
- entities/: Canonical records (KPIRecord, RejectedKPIRecord, BOQActivity)
- services/: Normalizer, formatter, approval filter, state machine,
  aggregator and bulk orchestrator
- exceptions: DomainError hierarchy
"""

from .entities.kpi_record import (
    KPIRecord,
    RejectedKPIRecord,
    InputType,
    ApprovalStatus,
    SessionIdentity,
    UserInfo,
)
from .entities.boq_activity import BOQActivity

__all__ = [
    'KPIRecord', 'RejectedKPIRecord', 'InputType', 'ApprovalStatus',
    'SessionIdentity', 'UserInfo',
    'BOQActivity',
]
