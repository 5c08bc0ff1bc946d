"""
Query filters for the record store interface.

Filters are plain value objects; each store translates them to its own
query language. A filter on a column the row or table does not have
matches nothing.
"""
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union


@dataclass(frozen=True)
class Eq:
    """Column equals value (None matches NULL/absent)."""
    column: str
    value: Any

    def matches(self, row: Dict[str, Any]) -> bool:
        if self.column not in row:
            return self.value is None
        return row[self.column] == self.value


@dataclass(frozen=True)
class In:
    """Column value is one of `values`."""
    column: str
    values: Tuple[Any, ...]

    def __init__(self, column: str, values):
        object.__setattr__(self, 'column', column)
        object.__setattr__(self, 'values', tuple(values))

    def matches(self, row: Dict[str, Any]) -> bool:
        return self.column in row and row[self.column] in self.values


@dataclass(frozen=True)
class Or:
    """Any of the nested filters matches."""
    filters: Tuple['Filter', ...]

    def __init__(self, *filters: 'Filter'):
        object.__setattr__(self, 'filters', tuple(filters))

    def matches(self, row: Dict[str, Any]) -> bool:
        return any(f.matches(row) for f in self.filters)


@dataclass(frozen=True)
class And:
    """All of the nested filters match."""
    filters: Tuple['Filter', ...]

    def __init__(self, *filters: 'Filter'):
        object.__setattr__(self, 'filters', tuple(filters))

    def matches(self, row: Dict[str, Any]) -> bool:
        return all(f.matches(row) for f in self.filters)


Filter = Union[Eq, In, Or, And]
