"""
Database tables and async engine setup for KPI reconciliation.

Column names follow the production planning database, which uses
"Title Case With Spaces" names. Quantities are stored as text because the
source sheets hold annotated and currency-formatted values.
"""
import uuid
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from kpi_recon.config import ReconConfig, get_config


def _new_id() -> str:
    return str(uuid.uuid4())


def _kpi_columns():
    """Columns shared by the live and rejected KPI tables."""
    return [
        sa.Column("id", sa.String(36), primary_key=True, default=_new_id),
        sa.Column("Project Full Code", sa.String(100), index=True),
        sa.Column("Project Code", sa.String(100), index=True),
        sa.Column("Project Sub Code", sa.String(100)),
        sa.Column("Activity Name", sa.String(255), index=True),
        sa.Column("Activity", sa.String(255)),
        sa.Column("Input Type", sa.String(20), index=True),
        sa.Column("Quantity", sa.Text),
        sa.Column("Unit", sa.String(50)),
        sa.Column("Section", sa.String(255)),
        sa.Column("Zone", sa.String(255)),
        sa.Column("Drilled Meters", sa.Text),
        sa.Column("Value", sa.Text),
        sa.Column("Target Date", sa.String(32)),
        sa.Column("Actual Date", sa.String(32)),
        sa.Column("Activity Date", sa.String(32)),
        sa.Column("Day", sa.String(64)),
        sa.Column("Recorded By", sa.String(255)),
        sa.Column("Notes", sa.Text),
        sa.Column("created_by", sa.String(255)),
        sa.Column("updated_by", sa.String(255)),
        sa.Column("created_at", sa.String(40)),
        sa.Column("updated_at", sa.String(40)),
    ]


def _approval_columns():
    return [
        sa.Column("Approval Status", sa.String(20)),
        sa.Column("Approved By", sa.String(255)),
        sa.Column("Approval Date", sa.String(32)),
    ]


def build_kpi_table(
    meta: sa.MetaData,
    name: str,
    with_approval_columns: bool = True,
) -> sa.Table:
    """
    Build the live KPI table.

    Args:
        meta: MetaData to register the table on
        name: Table name
        with_approval_columns: False reproduces the schema that predates the
            dedicated approval columns (approval lives in Notes)
    """
    columns = _kpi_columns()
    if with_approval_columns:
        columns += _approval_columns()
    return sa.Table(name, meta, *columns)


def build_rejected_table(meta: sa.MetaData, name: str) -> sa.Table:
    """Build the rejected KPI table (live shape plus rejection metadata)."""
    return sa.Table(
        name,
        meta,
        *_kpi_columns(),
        *_approval_columns(),
        sa.Column("Zone Number", sa.String(50)),
        sa.Column("Project Full Name", sa.String(255)),
        sa.Column("Activity Division", sa.String(255)),
        sa.Column("Rejection Reason", sa.Text),
        sa.Column("Rejected By", sa.String(255)),
        sa.Column("Rejected Date", sa.String(40)),
        sa.Column("Original KPI ID", sa.String(36)),
    )


def build_boq_table(meta: sa.MetaData, name: str) -> sa.Table:
    """Build the BOQ activities table."""
    return sa.Table(
        name,
        meta,
        sa.Column("id", sa.String(36), primary_key=True, default=_new_id),
        sa.Column("Project Code", sa.String(100), index=True),
        sa.Column("Project Full Code", sa.String(100), index=True),
        sa.Column("Activity Name", sa.String(255), index=True),
        sa.Column("Unit", sa.String(50)),
        sa.Column("Planned Units", sa.Text),
        sa.Column("Actual Units", sa.Text),
        sa.Column("created_at", sa.String(40)),
    )


def build_users_table(meta: sa.MetaData, name: str) -> sa.Table:
    """Build the users table read by the user directory."""
    return sa.Table(
        name,
        meta,
        sa.Column("id", sa.String(36), primary_key=True, default=_new_id),
        sa.Column("email", sa.String(255), index=True),
        sa.Column("full_name", sa.String(255)),
        sa.Column("phone_1", sa.String(50)),
        sa.Column("role", sa.String(50)),
        sa.Column("division", sa.String(255)),
    )


class ReconTables:
    """The four tables of one database, named from configuration."""

    def __init__(
        self,
        config: Optional[ReconConfig] = None,
        with_approval_columns: bool = True,
    ):
        config = config or get_config()
        self.metadata = sa.MetaData()
        self.live_kpi = build_kpi_table(
            self.metadata, config.live_kpi_table, with_approval_columns
        )
        self.rejected_kpi = build_rejected_table(self.metadata, config.rejected_kpi_table)
        self.boq = build_boq_table(self.metadata, config.boq_table)
        self.users = build_users_table(self.metadata, config.users_table)


def create_engine_from_config(config: Optional[ReconConfig] = None, url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    config = config or get_config()
    return create_async_engine(url or config.database_url, echo=False, future=True)


async def init_db(engine: AsyncEngine, tables: ReconTables) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(tables.metadata.create_all)
