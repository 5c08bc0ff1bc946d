"""
BOQ Activity Entity - Bill of Quantities aggregate for one (project, activity).

`planned_units` and `actual_units` are derived from KPI rows and are
overwritten on every recomputation.
"""
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class BOQActivity:
    """Canonical view of a BOQ activity row."""

    id: Optional[str] = None
    project_code: str = ""
    project_full_code: str = ""
    activity_name: str = ""
    unit: str = ""
    planned_units: Decimal = Decimal("0")
    actual_units: Decimal = Decimal("0")

    @property
    def progress_pct(self) -> float:
        if self.planned_units <= 0:
            return 0.0
        return float(self.actual_units / self.planned_units * 100)

    @property
    def remaining_units(self) -> Decimal:
        return max(Decimal("0"), self.planned_units - self.actual_units)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
