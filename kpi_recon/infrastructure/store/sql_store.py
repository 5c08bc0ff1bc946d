"""
SQL Store - RecordStore backed by a SQLAlchemy async engine.

Tables are SQLAlchemy Core tables whose column keys are the real column
names ("Project Full Code", "Approval Status", ...), so rows round-trip
as plain dicts without any attribute mapping.
"""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from kpi_recon.domain.exceptions import StoreError
from .base_store import RecordStore, Row
from .query import And, Eq, Filter, In, Or

logger = logging.getLogger(__name__)


class SqlRecordStore(RecordStore):
    """RecordStore over one SQLAlchemy Core table."""

    def __init__(self, engine: AsyncEngine, table: sa.Table):
        super().__init__(table.name)
        self.engine = engine
        self.sa_table = table

    # =========================================================================
    # Translation helpers
    # =========================================================================

    def _clause(self, flt: Filter):
        """Translate a filter object into a SQL expression."""
        if isinstance(flt, Eq):
            if flt.column not in self.sa_table.c:
                return sa.true() if flt.value is None else sa.false()
            column = self.sa_table.c[flt.column]
            if flt.value is None:
                return column.is_(None)
            return column == self._coerce(flt.value)
        if isinstance(flt, In):
            if flt.column not in self.sa_table.c or not flt.values:
                return sa.false()
            return self.sa_table.c[flt.column].in_([self._coerce(v) for v in flt.values])
        if isinstance(flt, Or):
            return sa.or_(sa.false(), *[self._clause(f) for f in flt.filters])
        if isinstance(flt, And):
            return sa.and_(sa.true(), *[self._clause(f) for f in flt.filters])
        raise TypeError(f"Unsupported filter: {flt!r}")

    def _where(self, statement, filters: Sequence[Filter]):
        for flt in filters:
            statement = statement.where(self._clause(flt))
        return statement

    @staticmethod
    def _coerce(value: Any) -> Any:
        """Text columns hold numbers and dates as strings."""
        if isinstance(value, (Decimal, float)) and not isinstance(value, bool):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        return value

    def _check_columns(self, payload: Row, operation: str) -> Row:
        for column in payload:
            if column not in self.sa_table.c:
                raise StoreError(
                    f"Could not find the '{column}' column of '{self.table}' in the schema cache",
                    table=self.table,
                    operation=operation,
                )
        return {k: self._coerce(v) for k, v in payload.items()}

    def _wrap(self, error: SQLAlchemyError, operation: str) -> StoreError:
        logger.error(f"{operation} on '{self.table}' failed: {error}")
        return StoreError(str(error), table=self.table, operation=operation)

    # =========================================================================
    # RecordStore
    # =========================================================================

    async def select(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Row]:
        statement = self._where(sa.select(self.sa_table), filters)
        if order_by and order_by in self.sa_table.c:
            column = self.sa_table.c[order_by]
            statement = statement.order_by(column.desc() if descending else column.asc())
        elif limit is not None or offset:
            # Stable paging needs a deterministic order
            statement = statement.order_by(self.sa_table.c[self.id_column])
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(statement)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise self._wrap(e, "select")

    async def insert(self, payload: Row) -> Row:
        values = self._check_columns(payload, "insert")
        if values.get(self.id_column) in (None, ""):
            values[self.id_column] = str(uuid.uuid4())
        try:
            async with self.engine.begin() as conn:
                await conn.execute(sa.insert(self.sa_table).values(**values))
        except SQLAlchemyError as e:
            raise self._wrap(e, "insert")
        stored = await self.get_by_id(values[self.id_column])
        return stored if stored is not None else values

    async def update(self, filters: Sequence[Filter], values: Row) -> List[Row]:
        clean = self._check_columns(values, "update")
        id_column = self.sa_table.c[self.id_column]
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(self._where(sa.select(id_column), filters))
                ids = [row[0] for row in result]
                if not ids:
                    return []
                await conn.execute(
                    sa.update(self.sa_table).where(id_column.in_(ids)).values(**clean)
                )
        except SQLAlchemyError as e:
            raise self._wrap(e, "update")
        return await self.select([In(self.id_column, ids)])

    async def delete(self, filters: Sequence[Filter]) -> int:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(self._where(sa.delete(self.sa_table), filters))
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise self._wrap(e, "delete")
