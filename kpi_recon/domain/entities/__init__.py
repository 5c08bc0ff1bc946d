"""
Domain Entities - Canonical KPI and BOQ shapes.
"""

from .kpi_record import (
    KPIRecord,
    RejectedKPIRecord,
    InputType,
    ApprovalStatus,
    SessionIdentity,
    UserInfo,
)
from .boq_activity import BOQActivity

__all__ = [
    'KPIRecord', 'RejectedKPIRecord', 'InputType', 'ApprovalStatus',
    'SessionIdentity', 'UserInfo',
    'BOQActivity',
]
