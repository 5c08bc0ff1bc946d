"""
Shared fixtures: configuration, in-memory stores and a fault-injecting store.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import pytest
import yaml

from kpi_recon.config import DEFAULT_CONFIG_PATH, ReconConfig
from kpi_recon.domain.exceptions import StoreError
from kpi_recon.domain.services import ApprovalService, BOQAggregationService
from kpi_recon.infrastructure.store import Eq, InMemoryRecordStore, RecordStore

FIXED_NOW = datetime(2024, 3, 15, 9, 30, 0)

LIVE_COLUMNS = [
    "Project Full Code", "Project Code", "Project Sub Code", "Activity Name",
    "Input Type", "Quantity", "Unit", "Section", "Zone", "Value",
    "Target Date", "Actual Date", "Activity Date", "Day", "Recorded By",
    "Notes", "created_by", "updated_by", "created_at", "updated_at",
]


def load_config(**overrides: Dict[str, Any]) -> ReconConfig:
    """Repository config with zero inter-batch delay plus section overrides."""
    with open(DEFAULT_CONFIG_PATH) as f:
        data = yaml.safe_load(f)
    data["paging"]["inter_batch_delay_seconds"] = 0
    for section, values in overrides.items():
        data.setdefault(section, {}).update(values)
    return ReconConfig.from_dict(data)


def targets(filters, record_id) -> bool:
    """True when a filter list is a single lookup of `record_id`."""
    return any(isinstance(f, Eq) and f.column == "id" and f.value == record_id for f in filters)


class FaultyStore(RecordStore):
    """
    Wraps a store and fails selected operations.

    `fail("delete")` fails every delete; `fail("update", when=pred)` fails
    updates whose arguments satisfy `pred(filters_or_payload, values)`.
    """

    def __init__(self, inner: RecordStore, hide_insert_ids: bool = False):
        super().__init__(inner.table)
        self.inner = inner
        self.hide_insert_ids = hide_insert_ids
        self._faults: Dict[str, list] = {}
        self.calls: Dict[str, int] = {}

    def fail(
        self,
        operation: str,
        when: Optional[Callable[..., bool]] = None,
        message: str = "connection reset by peer",
    ) -> "FaultyStore":
        self._faults.setdefault(operation, []).append((when, message))
        return self

    def heal(self, operation: Optional[str] = None) -> None:
        if operation is None:
            self._faults.clear()
        else:
            self._faults.pop(operation, None)

    def _check(self, operation: str, first: Any, second: Any = None) -> None:
        self.calls[operation] = self.calls.get(operation, 0) + 1
        for when, message in self._faults.get(operation, []):
            if when is None or when(first, second):
                raise StoreError(message, table=self.table, operation=operation)

    async def select(self, filters=(), order_by=None, descending=False, offset=0, limit=None):
        self._check("select", filters)
        return await self.inner.select(filters, order_by, descending, offset, limit)

    async def insert(self, payload):
        self._check("insert", payload)
        row = await self.inner.insert(payload)
        if self.hide_insert_ids:
            return {k: v for k, v in row.items() if k != self.id_column}
        return row

    async def update(self, filters, values):
        self._check("update", filters, values)
        return await self.inner.update(filters, values)

    async def delete(self, filters):
        self._check("delete", filters)
        return await self.inner.delete(filters)

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def __len__(self):
        return len(self.inner)


def kpi_row(**fields: Any) -> Dict[str, Any]:
    """Legacy-named live KPI row with sensible defaults."""
    row = {
        "Project Full Code": "P100-01",
        "Project Code": "P100",
        "Project Sub Code": "01",
        "Activity Name": "Excavation",
        "Input Type": "Actual",
        "Quantity": "50",
        "Unit": "m3",
        "Zone": "P100-01 - 1",
        "Actual Date": "2024-03-14",
        "Activity Date": "2024-03-14",
        "Recorded By": "site@example.com",
        "Notes": "",
        "created_by": "engineer@example.com",
        "updated_by": "engineer@example.com",
        "created_at": "2024-03-14T08:00:00",
    }
    row.update(fields)
    return row


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def live_store():
    return InMemoryRecordStore("Planning Database - KPI")


@pytest.fixture
def rejected_store():
    return InMemoryRecordStore("kpi_rejected")


@pytest.fixture
def boq_store():
    return InMemoryRecordStore("Planning Database - BOQ Rates", rows=[
        {
            "id": "boq-1",
            "Project Code": "P100-01",
            "Project Full Code": "P100-01",
            "Activity Name": "Excavation",
            "Unit": "m3",
            "Planned Units": "0",
            "Actual Units": "0",
        },
    ])


@pytest.fixture
def aggregator(live_store, boq_store, config):
    return BOQAggregationService(live_store, boq_store, config)


@pytest.fixture
def service(live_store, rejected_store, aggregator, config):
    return ApprovalService(
        live_store,
        rejected_store,
        aggregator=aggregator,
        config=config,
        clock=lambda: FIXED_NOW,
    )
