"""
Domain Services - Normalization, approval workflow and BOQ reconciliation.
"""

from .zone_formatter import build_project_full_code, format_zone
from .record_normalizer import (
    normalize,
    normalize_rejected,
    normalize_boq,
    parse_number,
    to_store_payload,
    KPI_FIELDS,
    BOQ_FIELDS,
)
from .approval_filter import (
    ApprovalNote,
    encode_approval_note,
    parse_approval_note,
    has_approval_marker,
    requires_approval,
    select_pending,
)
from .user_directory import resolve_actor, UserInfoCache, UserDirectory
from .saga import Saga
from .boq_aggregation_service import (
    BOQAggregationService,
    AggregateResult,
    KPIContext,
    QuantityValidation,
)
from .approval_service import ApprovalService, OperationResult
from .bulk_orchestrator import (
    BulkOrchestrator,
    BulkOperation,
    BulkScope,
    BulkOptions,
    BulkProgress,
    BulkResult,
)

__all__ = [
    'build_project_full_code',
    'format_zone',
    'normalize',
    'normalize_rejected',
    'normalize_boq',
    'parse_number',
    'to_store_payload',
    'KPI_FIELDS',
    'BOQ_FIELDS',
    'ApprovalNote',
    'encode_approval_note',
    'parse_approval_note',
    'has_approval_marker',
    'requires_approval',
    'select_pending',
    'resolve_actor',
    'UserInfoCache',
    'UserDirectory',
    'Saga',
    'BOQAggregationService',
    'AggregateResult',
    'KPIContext',
    'QuantityValidation',
    'ApprovalService',
    'OperationResult',
    'BulkOrchestrator',
    'BulkOperation',
    'BulkScope',
    'BulkOptions',
    'BulkProgress',
    'BulkResult',
]
