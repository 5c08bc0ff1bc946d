"""
Tests for the SQLAlchemy-backed store against a temporary SQLite database.

Each test runs one coroutine so the async engine lives on a single loop.
"""
import asyncio
from decimal import Decimal

import pytest

from kpi_recon.container import ServiceContainer
from kpi_recon.domain.entities import SessionIdentity
from kpi_recon.domain.exceptions import StoreError
from kpi_recon.domain.services import select_pending
from kpi_recon.infrastructure.store import And, Eq, In, Or, SqlRecordStore
from kpi_recon.models import ReconTables, create_engine_from_config, init_db

from conftest import kpi_row, load_config


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'recon.db'}"


def run_with_store(db_url, scenario, with_approval_columns=True):
    """Create the schema, run `scenario(store, tables)` and dispose the engine."""
    config = load_config()

    async def main():
        engine = create_engine_from_config(config, url=db_url)
        tables = ReconTables(config, with_approval_columns=with_approval_columns)
        try:
            await init_db(engine, tables)
            return await scenario(SqlRecordStore(engine, tables.live_kpi), tables)
        finally:
            await engine.dispose()

    return asyncio.run(main())


class TestSqlRecordStore:
    """CRUD and filters."""

    def test_insert_assigns_id(self, db_url):
        async def scenario(store, tables):
            row = await store.insert(kpi_row(Quantity=Decimal("12.50")))
            return row, await store.get_by_id(row["id"])

        inserted, fetched = run_with_store(db_url, scenario)

        assert inserted["id"]
        assert fetched["Quantity"] == "12.50"
        assert fetched["Activity Name"] == "Excavation"
        assert fetched["Approval Status"] is None

    def test_filters(self, db_url):
        async def scenario(store, tables):
            await store.insert(kpi_row(id="a"))
            await store.insert(kpi_row(id="b", **{"Input Type": "✓ Actual"}))
            await store.insert(kpi_row(id="c", **{"Input Type": "Planned", "Activity Name": "Piling"}))
            return {
                "eq": await store.select([Eq("Activity Name", "Piling")]),
                "in": await store.select([In("Input Type", ["Actual", "✓ Actual"])], order_by="id"),
                "or_unknown": await store.select(
                    [Or(Eq("activity_name", "Piling"), Eq("Activity Name", "Piling"))]
                ),
                "and": await store.select(
                    [And(Eq("Project Full Code", "P100-01"), Eq("Input Type", "Planned"))]
                ),
                "unknown": await store.select([Eq("no such column", "x")]),
                "missing_is_null": await store.select([Eq("no such column", None)]),
            }

        found = run_with_store(db_url, scenario)

        assert [r["id"] for r in found["eq"]] == ["c"]
        assert [r["id"] for r in found["in"]] == ["a", "b"]
        assert [r["id"] for r in found["or_unknown"]] == ["c"]
        assert [r["id"] for r in found["and"]] == ["c"]
        assert found["unknown"] == []
        assert len(found["missing_is_null"]) == 3

    def test_paging(self, db_url):
        async def scenario(store, tables):
            for i in range(5):
                await store.insert(kpi_row(id=f"k{i}"))
            first = await store.select(offset=0, limit=2)
            everything = await store.select_all(page_size=2)
            newest = await store.select(order_by="id", descending=True, limit=1)
            return first, everything, newest

        first, everything, newest = run_with_store(db_url, scenario)

        assert [r["id"] for r in first] == ["k0", "k1"]
        assert sorted(r["id"] for r in everything) == [f"k{i}" for i in range(5)]
        assert newest[0]["id"] == "k4"

    def test_update_and_delete(self, db_url):
        async def scenario(store, tables):
            await store.insert(kpi_row(id="a"))
            await store.insert(kpi_row(id="b"))
            updated = await store.update_by_id("a", {"Quantity": "99"})
            missing = await store.update_by_id("zzz", {"Quantity": "1"})
            deleted = await store.delete([In("id", ["a", "b", "c"])])
            return updated, missing, deleted, await store.select()

        updated, missing, deleted, remaining = run_with_store(db_url, scenario)

        assert updated[0]["Quantity"] == "99"
        assert missing == []
        assert deleted == 2
        assert remaining == []

    def test_unknown_column_reports_schema_error(self, db_url):
        async def scenario(store, tables):
            await store.insert(kpi_row(id="a"))
            with pytest.raises(StoreError) as excinfo:
                await store.update_by_id("a", {"Approval Status": "approved"})
            return excinfo.value

        error = run_with_store(db_url, scenario, with_approval_columns=False)

        assert "'Approval Status' column" in error.message
        assert "schema cache" in error.message


class TestEndToEnd:
    """Services over SQL tables."""

    def test_workflow_on_old_schema(self, db_url):
        config = load_config()

        async def main():
            engine = create_engine_from_config(config, url=db_url)
            tables = ReconTables(config, with_approval_columns=False)
            container = ServiceContainer.from_engine(engine, config, tables)
            try:
                await init_db(engine, tables)
                await container.boq_store.insert({
                    "id": "boq-1", "Project Full Code": "P100-01", "Project Code": "P100-01",
                    "Activity Name": "Excavation", "Planned Units": "0", "Actual Units": "0",
                })
                await container.live_store.insert(kpi_row(id="k1", Quantity="30"))
                await container.live_store.insert(kpi_row(id="k2", Quantity="20"))

                service = container.approvals()
                approved = await service.approve("k1", SessionIdentity(email="pm@example.com"))
                rejected = await service.reject("k2", "duplicate entry")
                rejected_rows = await container.rejected_store.select()
                restored = await service.restore(rejected_rows[0]["id"])
                live_rows = await container.live_store.select()
                boq = await container.boq_store.get_by_id("boq-1")
                return approved, rejected, restored, live_rows, boq, await container.rejected_store.select()
            finally:
                await container.dispose()

        approved, rejected, restored, live_rows, boq, rejected_left = asyncio.run(main())

        assert approved.success
        assert approved.details["fallback"] == "notes"
        assert rejected.success
        assert restored.success
        assert rejected_left == []
        assert len(live_rows) == 2
        approved_row = next(r for r in live_rows if r["id"] == "k1")
        assert approved_row["Notes"].startswith("APPROVED:approved:by:pm@example.com:date:")
        assert [r.id for r in select_pending(live_rows)] == [restored.details["kpi_id"]]
        assert boq["Actual Units"] == "50"
