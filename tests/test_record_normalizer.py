"""
Tests for the record normalizer.

Covers:
- Legacy vs canonical column naming
- Lenient numeric parsing
- Input-type variants and status normalization
- Derived full code and value
- Idempotence
- Reverse column mapping
"""
from decimal import Decimal

import pytest

from kpi_recon.domain.entities import InputType, KPIRecord
from kpi_recon.domain.services.record_normalizer import (
    column_for,
    field_filter,
    get_field,
    normalize,
    normalize_boq,
    normalize_rejected,
    parse_input_type,
    parse_number,
    to_store_payload,
)


LEGACY_ROW = {
    "id": "k1",
    "Project Full Code": "P100-01",
    "Project Code": "P100",
    "Activity Name": "Excavation",
    "Input Type": "Actual",
    "Quantity": "1,250.50",
    "Unit": "m3",
    "Actual Date": "2024-01-05",
    "Approval Status": None,
    "Notes": "",
    "created_by": "eng@example.com",
}

CANONICAL_ROW = {
    "id": "k1",
    "project_full_code": "P100-01",
    "project_code": "P100",
    "activity_name": "Excavation",
    "input_type": "Actual",
    "quantity": 1250.5,
    "unit": "m3",
    "actual_date": "2024-01-05",
    "approval_status": None,
    "notes": "",
    "created_by": "eng@example.com",
}


class TestNamingEras:
    """Both naming eras yield the same record."""

    def test_legacy_and_canonical_rows_agree(self):
        assert normalize(LEGACY_ROW) == normalize(CANONICAL_ROW)

    def test_canonical_key_wins_over_legacy(self):
        row = {"quantity": "10", "Quantity": "99"}
        assert normalize(row).quantity == Decimal("10")

    def test_empty_canonical_falls_back_to_legacy(self):
        row = {"activity_name": "  ", "Activity Name": "Piling"}
        assert normalize(row).activity_name == "Piling"

    def test_secondary_legacy_alias(self):
        assert normalize({"Activity": "Backfill"}).activity_name == "Backfill"

    def test_missing_fields_default(self):
        record = normalize({})
        assert record.id is None
        assert record.input_type is None
        assert record.quantity == Decimal("0")
        assert record.approval_status is None


class TestParseNumber:
    """Lenient numeric parsing."""

    @pytest.mark.parametrize("raw, expected", [
        ("1,250.50", Decimal("1250.50")),
        ("AED 3,000", Decimal("3000")),
        ("12 m", Decimal("12")),
        ("-4.5", Decimal("-4.5")),
        (7, Decimal("7")),
        (2.5, Decimal("2.5")),
        (Decimal("3.25"), Decimal("3.25")),
    ])
    def test_parses(self, raw, expected):
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "n/a", "--", True, float("nan")])
    def test_unparsable_is_zero(self, raw):
        assert parse_number(raw) == Decimal("0")


class TestClassification:
    """Input type and approval status."""

    @pytest.mark.parametrize("raw, expected", [
        ("Planned", InputType.PLANNED),
        ("⦿ Planned", InputType.PLANNED),
        ("ACTUAL", InputType.ACTUAL),
        ("✓ Actual", InputType.ACTUAL),
        (" actual ", InputType.ACTUAL),
        ("Forecast", None),
        ("", None),
    ])
    def test_input_type_variants(self, raw, expected):
        assert parse_input_type(raw) == expected

    def test_status_is_trimmed_and_lowercased(self):
        assert normalize({"Approval Status": "  Approved "}).approval_status == "approved"

    def test_blank_status_is_none(self):
        assert normalize({"approval_status": "   "}).approval_status is None


class TestDerivedFields:
    """Full code and value derivation."""

    def test_full_code_from_code_and_sub_code(self):
        record = normalize({"Project Code": "P200", "Project Sub Code": "03"})
        assert record.project_full_code == "P200-03"

    def test_stored_full_code_is_kept(self):
        record = normalize({"Project Full Code": "P200-X", "Project Code": "P200", "Project Sub Code": "03"})
        assert record.project_full_code == "P200-X"

    def test_value_from_quantity_and_rate(self):
        record = normalize({"Quantity": "10", "Rate": "2.5"})
        assert record.value == Decimal("25.0")

    def test_value_falls_back_to_quantity(self):
        assert normalize({"Quantity": "10"}).value == Decimal("10")

    def test_stored_value_is_kept(self):
        assert normalize({"Quantity": "10", "Rate": "3", "Value": "99"}).value == Decimal("99")


class TestIdempotence:
    """normalize(normalize(x)) == normalize(x)."""

    @pytest.mark.parametrize("row", [
        LEGACY_ROW,
        CANONICAL_ROW,
        {"Quantity": "10", "Rate": "0"},
        {"Quantity": "5", "Rate": "4", "Project Code": "P1", "Project Sub Code": "-02"},
        {"Input Type": "⦿ Planned", "Approval Status": " PENDING "},
        {},
    ])
    def test_idempotent(self, row):
        once = normalize(row)
        assert normalize(once) == once

    def test_rejected_record_keeps_rejection_fields(self):
        record = normalize_rejected({**LEGACY_ROW, "Rejection Reason": "wrong quantity", "Rejected By": "qa"})
        assert record.rejection_reason == "wrong quantity"
        assert record.rejected_by == "qa"
        assert normalize_rejected(record) == record


class TestBOQNormalization:
    """BOQ rows."""

    def test_boq_row(self):
        boq = normalize_boq({"id": 7, "Project Code": "P100", "Activity Name": "Excavation",
                             "Planned Units": "1,000", "Actual Units": "250"})
        assert boq.id == "7"
        assert boq.project_full_code == "P100"
        assert boq.planned_units == Decimal("1000")
        assert boq.progress_pct == 25.0


class TestReverseMapping:
    """Canonical field -> store column."""

    def test_column_for_uses_existing_spelling(self):
        assert column_for({"quantity": 1}, "quantity") == "quantity"
        assert column_for({"Quantity": 1}, "quantity") == "Quantity"

    def test_column_for_falls_back_to_naming(self):
        assert column_for({}, "approval_status") == "Approval Status"
        assert column_for({}, "approval_status", naming="canonical") == "approval_status"

    def test_to_store_payload(self):
        payload = to_store_payload(
            LEGACY_ROW,
            {"quantity": "60", "Notes": "fixed", "custom": 1, "id": "ignored",
             "input_type": InputType.PLANNED},
        )
        assert payload == {"Quantity": "60", "Notes": "fixed", "custom": 1, "Input Type": "Planned"}

    def test_field_filter_matches_any_spelling(self):
        flt = field_filter("project_full_code", "P100-01")
        assert flt.matches({"Project Full Code": "P100-01"})
        assert flt.matches({"project_full_code": "P100-01"})
        assert not flt.matches({"Project Full Code": "P100-02"})

    def test_get_field_on_record_dict(self):
        record = KPIRecord(activity_name="Piling")
        assert get_field(record.to_dict(), "activity_name") == "Piling"
