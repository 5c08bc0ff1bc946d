"""
BOQ Aggregation Service - Keeps BOQ planned/actual units equal to KPI sums.

Implements:
- Recompute of one (project, activity) aggregate from all live KPI rows
- KPI context (BOQ row next to its KPI totals)
- Quantity validation against the BOQ planned units

A project key matches either the project full code or the project code,
which covers rows written before the full-code convention. Totals are
always overwritten, never merged, and the BOQ row is never deleted here.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from kpi_recon.config import ReconConfig, get_config
from kpi_recon.domain.entities import BOQActivity, InputType, KPIRecord
from kpi_recon.domain.exceptions import DomainError
from kpi_recon.infrastructure.store import And, Or, RecordStore
from .record_normalizer import (
    BOQ_FIELDS,
    column_for,
    field_filter,
    normalize,
    normalize_boq,
)

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    """Outcome of one recompute."""
    project_full_code: str
    activity_name: str
    matched: bool
    planned_total: Decimal = Decimal("0")
    actual_total: Decimal = Decimal("0")
    boq_id: Optional[str] = None
    kpi_count: int = 0
    success: bool = True
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_full_code": self.project_full_code,
            "activity_name": self.activity_name,
            "matched": self.matched,
            "planned_total": str(self.planned_total),
            "actual_total": str(self.actual_total),
            "boq_id": self.boq_id,
            "kpi_count": self.kpi_count,
            "success": self.success,
            "message": self.message,
        }


@dataclass
class KPIContext:
    """A BOQ activity shown next to the KPI rows that feed it."""
    boq: Optional[BOQActivity]
    planned: List[KPIRecord] = field(default_factory=list)
    actual: List[KPIRecord] = field(default_factory=list)

    @property
    def boq_planned(self) -> Decimal:
        return self.boq.planned_units if self.boq else Decimal("0")

    @property
    def boq_actual(self) -> Decimal:
        return self.boq.actual_units if self.boq else Decimal("0")

    @property
    def kpi_planned_total(self) -> Decimal:
        return sum((r.quantity for r in self.planned), Decimal("0"))

    @property
    def kpi_actual_total(self) -> Decimal:
        return sum((r.quantity for r in self.actual), Decimal("0"))

    @property
    def progress(self) -> float:
        if self.boq_planned <= 0:
            return 0.0
        return float(self.boq_actual / self.boq_planned * 100)

    @property
    def variance(self) -> Decimal:
        return self.boq_actual - self.boq_planned

    def summary(self) -> Dict[str, Any]:
        return {
            "boq_planned": str(self.boq_planned),
            "boq_actual": str(self.boq_actual),
            "kpi_planned_total": str(self.kpi_planned_total),
            "kpi_actual_total": str(self.kpi_actual_total),
            "progress": round(self.progress, 2),
            "variance": str(self.variance),
        }


@dataclass
class QuantityValidation:
    """Whether a new KPI quantity fits inside the BOQ planned units."""
    valid: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


def matches_activity(record: KPIRecord, project_key: str, activity_name: str) -> bool:
    """Dual-key match used for both KPI rows and BOQ rows."""
    if record.activity_name != activity_name:
        return False
    return project_key in (record.project_full_code, record.project_code)


class BOQAggregationService:
    """
    Derives BOQ aggregates from live KPI rows.

    Usage:
        service = BOQAggregationService(kpi_store, boq_store)
        result = await service.recompute("P100-01", "Excavation")
    """

    def __init__(
        self,
        kpi_store: RecordStore,
        boq_store: RecordStore,
        config: Optional[ReconConfig] = None,
    ):
        self.kpi_store = kpi_store
        self.boq_store = boq_store
        self.config = config or get_config()

    def _scope(self, project_key: str, activity_name: str, aliases=None):
        return And(
            Or(
                field_filter("project_full_code", project_key, aliases),
                field_filter("project_code", project_key, aliases),
            ),
            field_filter("activity_name", activity_name, aliases),
        )

    async def fetch_kpis(self, project_key: str, activity_name: str) -> List[KPIRecord]:
        """All live KPI rows for the pair, fetched page by page."""
        rows = await self.kpi_store.select_all(
            [self._scope(project_key, activity_name)],
            page_size=self.config.fetch_page_size,
        )
        records = [normalize(row) for row in rows]
        return [r for r in records if matches_activity(r, project_key, activity_name)]

    async def find_boq_row(self, project_key: str, activity_name: str) -> Optional[Dict[str, Any]]:
        """First BOQ row matching the pair, or None."""
        rows = await self.boq_store.select([self._scope(project_key, activity_name, BOQ_FIELDS)])
        for row in rows:
            boq = normalize_boq(row)
            if boq.activity_name == activity_name and project_key in (
                boq.project_full_code, boq.project_code
            ):
                return row
        return None

    @staticmethod
    def totals(records: List[KPIRecord]) -> Dict[InputType, Decimal]:
        """Sum quantities per input type; rows of unknown type are ignored."""
        sums = {InputType.PLANNED: Decimal("0"), InputType.ACTUAL: Decimal("0")}
        for record in records:
            if record.input_type in sums:
                sums[record.input_type] += record.quantity
        return sums

    async def recompute(self, project_full_code: str, activity_name: str) -> AggregateResult:
        """
        Recompute and write back the planned/actual units of one activity.

        Returns:
            AggregateResult; matched=False when no BOQ row exists, and
            success=False when the store failed.
        """
        result = AggregateResult(
            project_full_code=project_full_code,
            activity_name=activity_name,
            matched=False,
        )
        try:
            records = await self.fetch_kpis(project_full_code, activity_name)
            sums = self.totals(records)
            result.planned_total = sums[InputType.PLANNED]
            result.actual_total = sums[InputType.ACTUAL]
            result.kpi_count = len(records)

            boq_row = await self.find_boq_row(project_full_code, activity_name)
            if boq_row is None:
                result.message = "No matching BOQ activity found"
                logger.warning(
                    f"No matching BOQ activity for {project_full_code} / {activity_name}"
                )
                return result

            naming = self.config.write_naming
            values = {
                column_for(boq_row, "planned_units", naming, BOQ_FIELDS): str(result.planned_total),
                column_for(boq_row, "actual_units", naming, BOQ_FIELDS): str(result.actual_total),
            }
            boq_id = boq_row[self.boq_store.id_column]
            await self.boq_store.update_by_id(boq_id, values)
        except DomainError as e:
            logger.error(f"Recompute failed for {project_full_code} / {activity_name}: {e.message}")
            result.success = False
            result.message = e.message
            return result

        result.matched = True
        result.boq_id = str(boq_id)
        result.message = (
            f"BOQ updated: Planned = {result.planned_total}, Actual = {result.actual_total}"
        )
        logger.info(
            f"Recomputed {project_full_code} / {activity_name} from {result.kpi_count} KPIs: "
            f"planned={result.planned_total} actual={result.actual_total}"
        )
        return result

    async def kpi_context(self, project_full_code: str, activity_name: str) -> KPIContext:
        """BOQ row and its KPI rows split into planned and actual."""
        records = await self.fetch_kpis(project_full_code, activity_name)
        boq_row = await self.find_boq_row(project_full_code, activity_name)
        return KPIContext(
            boq=normalize_boq(boq_row) if boq_row is not None else None,
            planned=[r for r in records if r.is_planned],
            actual=[r for r in records if r.is_actual],
        )

    async def validate_quantity(
        self,
        project_full_code: str,
        activity_name: str,
        new_quantity: Decimal,
        is_actual: bool = True,
    ) -> QuantityValidation:
        """
        Check whether an Actual quantity keeps the KPI total within BOQ planned units.

        Planned quantities are always valid.
        """
        if not is_actual:
            return QuantityValidation(valid=True, message="OK")

        boq_row = await self.find_boq_row(project_full_code, activity_name)
        if boq_row is None:
            return QuantityValidation(valid=False, message="No BOQ activity found")

        boq = normalize_boq(boq_row)
        records = await self.fetch_kpis(project_full_code, activity_name)
        current_total = self.totals(records)[InputType.ACTUAL]
        new_quantity = Decimal(str(new_quantity))
        new_total = current_total + new_quantity
        details = {
            "boq_planned": boq.planned_units,
            "current_kpi_total": current_total,
            "new_kpi_quantity": new_quantity,
            "new_total": new_total,
        }

        if new_total > boq.planned_units:
            details["exceeded"] = new_total - boq.planned_units
            return QuantityValidation(
                valid=False,
                message=(
                    f"Total KPI Actual ({new_total:.2f}) would exceed "
                    f"BOQ Planned ({boq.planned_units:.2f})"
                ),
                details=details,
            )

        details["remaining"] = boq.planned_units - new_total
        return QuantityValidation(valid=True, message="Valid", details=details)
