"""
Tests for the command line interface against a temporary SQLite database.
"""
import asyncio

import pytest
from click.testing import CliRunner

from cli import cli
from kpi_recon.container import ServiceContainer
from kpi_recon.models import create_engine_from_config, init_db

from conftest import kpi_row, load_config


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def runner():
    return CliRunner()


def seed_database(db_url, live=(), rejected=(), boq=()):
    config = load_config()

    async def main():
        container = ServiceContainer.from_engine(create_engine_from_config(config, url=db_url), config)
        try:
            await init_db(container.engine, container.tables)
            for row in live:
                await container.live_store.insert(row)
            for row in rejected:
                await container.rejected_store.insert(row)
            for row in boq:
                await container.boq_store.insert(row)
        finally:
            await container.dispose()

    asyncio.run(main())


def invoke(runner, db_url, *args):
    return runner.invoke(cli, ["--database-url", db_url, *args])


class TestCommands:
    """Tests for the individual commands."""

    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("init-db", "pending", "rejected", "approve", "reject",
                        "restore", "approve-rejected", "recompute", "bulk", "serve"):
            assert command in result.output

    def test_init_db_and_empty_listing(self, runner, db_url):
        assert invoke(runner, db_url, "init-db").exit_code == 0

        result = invoke(runner, db_url, "pending")

        assert result.exit_code == 0
        assert "0 record(s)" in result.output

    def test_pending_json(self, runner, db_url):
        seed_database(db_url, live=[kpi_row(id="k1", Quantity="12.5")])

        result = invoke(runner, db_url, "pending", "--json")

        assert result.exit_code == 0
        assert '"id": "k1"' in result.output
        assert '"quantity": "12.5"' in result.output

    def test_approve(self, runner, db_url):
        seed_database(db_url, live=[kpi_row(id="k1")])

        result = invoke(runner, db_url, "approve", "k1", "--email", "pm@example.com")

        assert result.exit_code == 0
        assert "OK: KPI approved by pm@example.com" in result.output
        assert "0 record(s)" in invoke(runner, db_url, "pending").output

    def test_approve_missing_exits_non_zero(self, runner, db_url):
        seed_database(db_url)

        result = invoke(runner, db_url, "approve", "nope")

        assert result.exit_code == 1
        assert "KPI_NOT_FOUND" in result.output

    def test_reject_and_list_rejected(self, runner, db_url):
        seed_database(db_url, live=[kpi_row(id="k1")])

        result = invoke(runner, db_url, "reject", "k1", "--reason", "wrong quantity")
        assert result.exit_code == 0

        listing = invoke(runner, db_url, "rejected")
        assert "1 record(s)" in listing.output
        assert "wrong quantity" in listing.output

    def test_recompute(self, runner, db_url):
        seed_database(
            db_url,
            live=[kpi_row(Quantity="30")],
            boq=[{"id": "boq-1", "Project Full Code": "P100-01", "Activity Name": "Excavation"}],
        )

        result = invoke(runner, db_url, "recompute", "P100-01", "Excavation")

        assert result.exit_code == 0
        assert "Actual total:  30" in result.output

    def test_bulk_approve(self, runner, db_url):
        seed_database(db_url, live=[kpi_row(id=f"k{i}") for i in range(3)])

        result = invoke(runner, db_url, "bulk", "approve", "--batch-size", "2")

        assert result.exit_code == 0
        assert "Succeeded: 3" in result.output
        assert "processed 2" in result.output

    def test_bulk_with_failures_exits_non_zero(self, runner, db_url):
        seed_database(db_url)

        result = invoke(runner, db_url, "bulk", "restore", "--id", "ghost")

        assert result.exit_code == 1
        assert "ghost" in result.output
