"""
Base Store - Abstract asynchronous record store.

The reconciliation core talks to every table (live KPI, rejected KPI,
BOQ activities, users) through this interface only: select, insert,
update and delete, with equality/membership filters and range paging.
Rows are plain dicts keyed by the store's own column names.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from .query import Eq, Filter

Row = Dict[str, Any]


class RecordStore(ABC):
    """
    Abstract record store for one table.

    Implementations raise `StoreError` for every failure, carrying the
    store's own message so callers can recognise schema drift.
    """

    id_column = "id"

    def __init__(self, table: str):
        self.table = table

    @abstractmethod
    async def select(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Row]:
        """
        Retrieve rows matching all filters.

        Args:
            filters: Filters combined with AND
            order_by: Column to sort by (ignored if the column is unknown)
            descending: Sort direction
            offset: Number of rows to skip
            limit: Maximum number of rows to return

        Returns:
            List of rows
        """

    @abstractmethod
    async def insert(self, payload: Row) -> Row:
        """
        Insert one row and return it as stored (including its new id).
        """

    @abstractmethod
    async def update(self, filters: Sequence[Filter], values: Row) -> List[Row]:
        """
        Update all rows matching the filters and return them as stored.
        """

    @abstractmethod
    async def delete(self, filters: Sequence[Filter]) -> int:
        """
        Delete all rows matching the filters.

        Returns:
            Number of deleted rows
        """

    async def get_by_id(self, record_id: Any) -> Optional[Row]:
        """
        Retrieve a row by its id.

        Returns:
            The row if found, None otherwise
        """
        rows = await self.select([Eq(self.id_column, record_id)], limit=1)
        return rows[0] if rows else None

    async def update_by_id(self, record_id: Any, values: Row) -> List[Row]:
        """Update a single row by id."""
        return await self.update([Eq(self.id_column, record_id)], values)

    async def delete_by_id(self, record_id: Any) -> int:
        """Delete a single row by id."""
        return await self.delete([Eq(self.id_column, record_id)])

    async def select_all(
        self,
        filters: Sequence[Filter] = (),
        page_size: int = 1000,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Row]:
        """
        Fetch every matching row in pages until a short page is returned.

        Store-side default page sizes are never trusted: a single
        unpaginated query may silently truncate large tables.
        """
        rows: List[Row] = []
        offset = 0
        while True:
            page = await self.select(
                filters,
                order_by=order_by,
                descending=descending,
                offset=offset,
                limit=page_size,
            )
            rows.extend(page)
            if len(page) < page_size:
                break
            offset += page_size
        return rows
