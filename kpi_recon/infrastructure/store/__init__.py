"""
Record stores - the query interface the reconciliation core runs against.
"""

from .query import Eq, In, Or, And, Filter
from .base_store import RecordStore, Row
from .memory_store import InMemoryRecordStore
from .sql_store import SqlRecordStore

__all__ = [
    'Eq', 'In', 'Or', 'And', 'Filter',
    'RecordStore', 'Row',
    'InMemoryRecordStore',
    'SqlRecordStore',
]
