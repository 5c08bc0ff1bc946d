"""
Record Normalizer - Maps raw store rows to canonical KPI and BOQ shapes.

Rows arrive in two naming eras: legacy "Title Case With Spaces" columns and
newer snake_case fields, sometimes mixed within one row. Every field is
resolved through a declarative alias table; adding a legacy spelling is a
change to `KPI_FIELDS`, not to any lookup code.

The reverse direction (`column_for`, `to_store_payload`) picks the column a
write should target: the spelling the row already uses, otherwise the
configured naming era.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from kpi_recon.domain.entities import (
    BOQActivity,
    InputType,
    KPIRecord,
    RejectedKPIRecord,
)
from kpi_recon.infrastructure.store.query import Eq, Or
from .zone_formatter import build_project_full_code

RawRow = Mapping[str, Any]

LEGACY = "legacy"
CANONICAL = "canonical"


@dataclass(frozen=True)
class FieldAliases:
    """Candidate keys of one semantic field, canonical first."""
    canonical: str
    legacy: Tuple[str, ...] = ()

    @property
    def keys(self) -> Tuple[str, ...]:
        return (self.canonical,) + tuple(k for k in self.legacy if k != self.canonical)

    def write_key(self, naming: str = LEGACY) -> str:
        if naming == LEGACY and self.legacy:
            return self.legacy[0]
        return self.canonical


KPI_FIELDS: Dict[str, FieldAliases] = {
    "id": FieldAliases("id"),
    "input_type": FieldAliases("input_type", ("Input Type",)),
    "project_full_code": FieldAliases("project_full_code", ("Project Full Code",)),
    "project_code": FieldAliases("project_code", ("Project Code",)),
    "project_sub_code": FieldAliases("project_sub_code", ("Project Sub Code",)),
    "activity_name": FieldAliases("activity_name", ("Activity Name", "Activity")),
    "quantity": FieldAliases("quantity", ("Quantity",)),
    "unit": FieldAliases("unit", ("Unit",)),
    "value": FieldAliases("value", ("Value",)),
    "rate": FieldAliases("rate", ("Rate",)),
    "target_date": FieldAliases("target_date", ("Target Date",)),
    "actual_date": FieldAliases("actual_date", ("Actual Date",)),
    "activity_date": FieldAliases("activity_date", ("Activity Date",)),
    "day": FieldAliases("day", ("Day",)),
    "zone": FieldAliases("zone", ("Zone",)),
    "zone_number": FieldAliases("zone_number", ("Zone Number", "Zone #")),
    "section": FieldAliases("section", ("Section",)),
    "notes": FieldAliases("notes", ("Notes",)),
    "created_by": FieldAliases("created_by", ("created_by", "Created By")),
    "updated_by": FieldAliases("updated_by", ("updated_by", "Updated By")),
    "recorded_by": FieldAliases("recorded_by", ("Recorded By",)),
    "created_at": FieldAliases("created_at", ("created_at", "Created At")),
    "approval_status": FieldAliases("approval_status", ("Approval Status",)),
    "approved_by": FieldAliases("approved_by", ("Approved By",)),
    "approval_date": FieldAliases("approval_date", ("Approval Date",)),
    "rejection_reason": FieldAliases("rejection_reason", ("Rejection Reason",)),
    "rejected_by": FieldAliases("rejected_by", ("Rejected By",)),
    "rejected_date": FieldAliases("rejected_date", ("Rejected Date",)),
    "original_kpi_id": FieldAliases("original_kpi_id", ("Original KPI ID",)),
}

BOQ_FIELDS: Dict[str, FieldAliases] = {
    "id": FieldAliases("id"),
    "project_code": FieldAliases("project_code", ("Project Code",)),
    "project_full_code": FieldAliases("project_full_code", ("Project Full Code",)),
    "activity_name": FieldAliases("activity_name", ("Activity Name", "Activity")),
    "unit": FieldAliases("unit", ("Unit",)),
    "planned_units": FieldAliases("planned_units", ("Planned Units",)),
    "actual_units": FieldAliases("actual_units", ("Actual Units",)),
}

REJECTION_FIELDS = ("rejection_reason", "rejected_by", "rejected_date", "original_kpi_id")
APPROVAL_FIELDS = ("approval_status", "approved_by", "approval_date")

_TEXT_FIELDS = (
    "project_full_code", "project_code", "project_sub_code", "activity_name",
    "unit", "target_date", "actual_date", "activity_date", "day",
    "zone", "zone_number", "section", "notes",
    "created_by", "updated_by", "recorded_by", "created_at",
    "approved_by", "approval_date",
)

_NUMBER_PATTERN = re.compile(r"-?\d[\d,]*(?:\.\d+)?|-?\.\d+")

_INPUT_TYPE_PATTERN = re.compile(r"[^a-z]")


# =============================================================================
# Value parsing
# =============================================================================

def is_empty(value: Any) -> bool:
    """None and blank strings count as absent."""
    return value is None or (isinstance(value, str) and not value.strip())


def parse_number(value: Any) -> Decimal:
    """
    Parse a numeric cell leniently.

    Thousands separators and any non-numeric prefix/suffix are dropped
    ("AED 1,250.50" -> 1250.50, "12 m" -> 12). Unparsable input yields 0.
    """
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
        return parsed if parsed.is_finite() else Decimal("0")
    match = _NUMBER_PATTERN.search(str(value))
    if not match:
        return Decimal("0")
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return Decimal("0")


def parse_input_type(value: Any) -> Optional[InputType]:
    """Map 'Planned', '⦿ Planned', 'ACTUAL', '✓ Actual', ... to InputType."""
    if isinstance(value, InputType):
        return value
    if is_empty(value):
        return None
    letters = _INPUT_TYPE_PATTERN.sub("", str(value).lower())
    if letters == "planned":
        return InputType.PLANNED
    if letters == "actual":
        return InputType.ACTUAL
    return None


def normalize_status(value: Any) -> Optional[str]:
    """Lower-case and trim an approval status; blank becomes None."""
    if is_empty(value):
        return None
    return str(value).strip().lower()


def _text(value: Any) -> str:
    if is_empty(value):
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


# =============================================================================
# Lookup
# =============================================================================

def get_field(
    raw: RawRow,
    field: str,
    aliases: Optional[Mapping[str, FieldAliases]] = None,
) -> Any:
    """
    Read one semantic field from a raw row.

    The first candidate key that is present with a non-empty value wins.
    """
    entry = (aliases or KPI_FIELDS)[field]
    for key in entry.keys:
        if key in raw and not is_empty(raw[key]):
            return raw[key]
    return None


def present_keys(raw: RawRow, field: str, aliases: Optional[Mapping[str, FieldAliases]] = None) -> Tuple[str, ...]:
    """All spellings of `field` that occur in the row."""
    entry = (aliases or KPI_FIELDS)[field]
    return tuple(k for k in entry.keys if k in raw)


def _as_mapping(raw: Union[RawRow, KPIRecord, BOQActivity]) -> RawRow:
    if isinstance(raw, KPIRecord):
        return raw.to_dict()
    if isinstance(raw, BOQActivity):
        return raw.to_dict()
    return raw


# =============================================================================
# Normalization
# =============================================================================

def _kpi_values(raw: RawRow) -> Dict[str, Any]:
    values: Dict[str, Any] = {field: _text(get_field(raw, field)) for field in _TEXT_FIELDS}

    record_id = get_field(raw, "id")
    values["id"] = None if record_id is None else str(record_id)
    values["input_type"] = parse_input_type(get_field(raw, "input_type"))
    values["approval_status"] = normalize_status(get_field(raw, "approval_status"))

    if not values["project_full_code"]:
        values["project_full_code"] = build_project_full_code(
            values["project_code"], values["project_sub_code"]
        )

    quantity = parse_number(get_field(raw, "quantity"))
    value = parse_number(get_field(raw, "value"))
    if value == 0:
        rate = parse_number(get_field(raw, "rate"))
        value = quantity * rate if rate != 0 else quantity
    values["quantity"] = quantity
    values["value"] = value
    return values


def normalize(raw: Union[RawRow, KPIRecord]) -> KPIRecord:
    """
    Normalize a raw live-store row into a KPIRecord.

    Accepts an already-normalized record as well; the result is the same
    record (normalization is idempotent).
    """
    return KPIRecord(**_kpi_values(_as_mapping(raw)))


def normalize_rejected(raw: Union[RawRow, KPIRecord]) -> RejectedKPIRecord:
    """Normalize a rejected-store row, keeping its rejection metadata."""
    mapping = _as_mapping(raw)
    values = _kpi_values(mapping)
    for field in REJECTION_FIELDS:
        values[field] = _text(get_field(mapping, field))
    return RejectedKPIRecord(**values)


def normalize_boq(raw: Union[RawRow, BOQActivity]) -> BOQActivity:
    """Normalize a BOQ activity row."""
    mapping = _as_mapping(raw)
    record_id = get_field(mapping, "id", BOQ_FIELDS)
    project_code = _text(get_field(mapping, "project_code", BOQ_FIELDS))
    return BOQActivity(
        id=None if record_id is None else str(record_id),
        project_code=project_code,
        project_full_code=_text(get_field(mapping, "project_full_code", BOQ_FIELDS)) or project_code,
        activity_name=_text(get_field(mapping, "activity_name", BOQ_FIELDS)),
        unit=_text(get_field(mapping, "unit", BOQ_FIELDS)),
        planned_units=parse_number(get_field(mapping, "planned_units", BOQ_FIELDS)),
        actual_units=parse_number(get_field(mapping, "actual_units", BOQ_FIELDS)),
    )


# =============================================================================
# Reverse mapping (canonical field -> store column)
# =============================================================================

def resolve_field(key: str, aliases: Optional[Mapping[str, FieldAliases]] = None) -> Optional[str]:
    """Semantic field name for a canonical or legacy key, or None if unknown."""
    for field, entry in (aliases or KPI_FIELDS).items():
        if key in entry.keys:
            return field
    return None


def column_for(
    row: RawRow,
    field: str,
    naming: str = LEGACY,
    aliases: Optional[Mapping[str, FieldAliases]] = None,
) -> str:
    """Column a write of `field` should target for this row."""
    entry = (aliases or KPI_FIELDS)[field]
    for key in entry.keys:
        if key in row:
            return key
    return entry.write_key(naming)


def to_store_payload(
    row: RawRow,
    edits: Mapping[str, Any],
    naming: str = LEGACY,
    aliases: Optional[Mapping[str, FieldAliases]] = None,
) -> Dict[str, Any]:
    """
    Translate edited fields into a payload for the row's store.

    Known fields (canonical or legacy spelling) are written to the column
    the row already uses; unknown keys pass through unchanged. Enum values
    are stored as their string value.
    """
    payload: Dict[str, Any] = {}
    for key, value in edits.items():
        if key == "id":
            continue
        if isinstance(value, InputType):
            value = value.value
        field = resolve_field(key, aliases)
        if field is None:
            payload[key] = value
        else:
            payload[column_for(row, field, naming, aliases)] = value
    return payload


def field_filter(field: str, value: Any, aliases: Optional[Mapping[str, FieldAliases]] = None) -> Or:
    """Filter matching `value` under any spelling of `field`."""
    entry = (aliases or KPI_FIELDS)[field]
    return Or(*[Eq(key, value) for key in entry.keys])


def strip_fields(row: RawRow, fields: Iterable[str]) -> Dict[str, Any]:
    """Copy of the row without any spelling of the given fields."""
    doomed = set()
    for field in fields:
        doomed.update(KPI_FIELDS[field].keys)
    return {k: v for k, v in row.items() if k not in doomed}
