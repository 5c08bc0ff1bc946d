"""
KPI Record Entity - One dated observation of progress against a BOQ activity.

Implements:
- Planned / Actual classification
- Approval provenance (status, approver, date)
- Rejected-store shape with rejection metadata
"""
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class InputType(str, Enum):
    """Whether a KPI row is a target or an achievement."""
    PLANNED = "Planned"
    ACTUAL = "Actual"


class ApprovalStatus(str, Enum):
    """Approval states stored in the status column."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class KPIRecord:
    """
    Canonical view of a KPI row, independent of the column-naming era.

    Only `target_date` is meaningful for Planned rows and only
    `actual_date`/`activity_date` for Actual rows.
    """

    id: Optional[str] = None
    input_type: Optional[InputType] = None

    project_full_code: str = ""
    project_code: str = ""
    project_sub_code: str = ""
    activity_name: str = ""

    quantity: Decimal = Decimal("0")
    unit: str = ""
    value: Decimal = Decimal("0")

    target_date: str = ""
    actual_date: str = ""
    activity_date: str = ""
    day: str = ""

    zone: str = ""
    zone_number: str = ""
    section: str = ""

    notes: str = ""
    created_by: str = ""
    updated_by: str = ""
    recorded_by: str = ""
    created_at: str = ""

    approval_status: Optional[str] = None
    approved_by: str = ""
    approval_date: str = ""

    @property
    def is_actual(self) -> bool:
        return self.input_type == InputType.ACTUAL

    @property
    def is_planned(self) -> bool:
        return self.input_type == InputType.PLANNED

    @property
    def effective_date(self) -> str:
        """The date that carries meaning for this row's input type."""
        if self.is_planned:
            return self.target_date
        return self.activity_date or self.actual_date or self.target_date

    def to_dict(self) -> Dict[str, Any]:
        """Canonical snake_case mapping of this record."""
        data = asdict(self)
        if self.input_type is not None:
            data["input_type"] = self.input_type.value
        return data


@dataclass(frozen=True)
class RejectedKPIRecord(KPIRecord):
    """A KPI record held in the rejected store."""

    rejection_reason: str = ""
    rejected_by: str = ""
    rejected_date: str = ""
    original_kpi_id: str = ""


@dataclass
class SessionIdentity:
    """
    Identity handed over by the outer session/auth layer.

    This core never authenticates; it only derives an audit string.
    """
    email: Optional[str] = None
    alternate_email: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class UserInfo:
    """Display information for a record creator."""
    name: str
    email: str = ""
    phone: Optional[str] = None
    role: Optional[str] = None
    division: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
