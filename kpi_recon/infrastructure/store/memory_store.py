"""
In-memory record store.

Keeps rows in insertion order. When constructed with a column set it
behaves like a fixed schema: writes naming an unknown column fail with the
same kind of message a hosted database returns, which exercises the
schema-drift fallbacks.
"""
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence

from kpi_recon.domain.exceptions import StoreError
from .base_store import RecordStore, Row
from .query import Filter


class InMemoryRecordStore(RecordStore):
    """Schema-permissive (or optionally schema-strict) store held in a list."""

    def __init__(
        self,
        table: str,
        rows: Optional[Iterable[Row]] = None,
        columns: Optional[Iterable[str]] = None,
    ):
        super().__init__(table)
        self.columns = set(columns) if columns is not None else None
        if self.columns is not None:
            self.columns.add(self.id_column)
        self._rows: List[Row] = []
        for row in rows or []:
            self._rows.append(self._with_id(dict(row)))

    @property
    def rows(self) -> List[Row]:
        """Snapshot of all stored rows."""
        return [dict(r) for r in self._rows]

    def _with_id(self, row: Row) -> Row:
        if row.get(self.id_column) in (None, ""):
            row[self.id_column] = str(uuid.uuid4())
        return row

    def _check_columns(self, payload: Row) -> None:
        if self.columns is None:
            return
        for column in payload:
            if column not in self.columns:
                raise StoreError(
                    f"Could not find the '{column}' column of '{self.table}' in the schema cache",
                    table=self.table,
                )

    def _matching(self, filters: Sequence[Filter]) -> List[Row]:
        return [r for r in self._rows if all(f.matches(r) for f in filters)]

    async def select(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Row]:
        rows = self._matching(filters)
        if order_by and any(order_by in r for r in rows):
            rows = sorted(rows, key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return [dict(r) for r in rows]

    async def insert(self, payload: Row) -> Row:
        self._check_columns(payload)
        row = self._with_id(dict(payload))
        self._rows.append(row)
        return dict(row)

    async def update(self, filters: Sequence[Filter], values: Row) -> List[Row]:
        self._check_columns(values)
        updated = []
        for row in self._matching(filters):
            row.update(values)
            updated.append(dict(row))
        return updated

    async def delete(self, filters: Sequence[Filter]) -> int:
        doomed = self._matching(filters)
        doomed_ids = {id(r) for r in doomed}
        self._rows = [r for r in self._rows if id(r) not in doomed_ids]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._rows)

    def find(self, **criteria: Any) -> List[Dict[str, Any]]:
        """Rows whose columns equal all given values (test convenience)."""
        return [
            dict(r) for r in self._rows
            if all(r.get(k) == v for k, v in criteria.items())
        ]
