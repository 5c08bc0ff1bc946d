"""
Domain Exceptions for KPI approval and BOQ reconciliation.

Custom exceptions for the approval workflow:
- Record lookup failures
- Backing store failures
- Multi-step transition failures (rolled back or possibly duplicated)
"""
from typing import Iterable, Optional


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "DOMAIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)


# =============================================================================
# Store Exceptions
# =============================================================================

class StoreError(DomainError):
    """Raised when the backing store rejects or fails a request."""

    def __init__(self, message: str, table: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, code="STORE_ERROR")
        self.table = table
        self.operation = operation


def is_schema_error(message: str, keywords: Iterable[str]) -> bool:
    """
    Check whether a store error message describes a missing column.

    Args:
        message: Error text reported by the store
        keywords: Phrases that identify schema-related errors

    Returns:
        True if any keyword occurs in the message (case-insensitive)
    """
    text = (message or "").lower()
    return any(keyword.lower() in text for keyword in keywords)


# =============================================================================
# Record Exceptions
# =============================================================================

class KPINotFoundError(DomainError):
    """Raised when a live KPI record cannot be found."""

    def __init__(self, kpi_id: str):
        message = f"KPI with id '{kpi_id}' not found"
        super().__init__(message, code="KPI_NOT_FOUND")
        self.kpi_id = kpi_id


class RejectedKPINotFoundError(DomainError):
    """Raised when a rejected KPI record cannot be found."""

    def __init__(self, rejected_id: str):
        message = f"Rejected KPI with id '{rejected_id}' not found"
        super().__init__(message, code="REJECTED_KPI_NOT_FOUND")
        self.rejected_id = rejected_id


class ValidationError(DomainError):
    """Raised when data validation fails."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation failed for '{field}': {message}", code="VALIDATION_ERROR")
        self.field = field


# =============================================================================
# Transition Exceptions
# =============================================================================

class TransitionAbortedError(DomainError):
    """Raised when a transition step failed and its compensation succeeded."""

    def __init__(self, transition: str, step: str, cause: str):
        message = (
            f"{transition} cancelled: step '{step}' failed ({cause}). "
            f"Earlier steps were rolled back to avoid duplicates."
        )
        super().__init__(message, code="TRANSITION_ROLLED_BACK")
        self.transition = transition
        self.step = step
        self.cause = cause


class PossibleDuplicateError(DomainError):
    """Raised when a compensating action fails and both stores may hold the record."""

    def __init__(self, transition: str, step: str, cause: str, rollback_error: str):
        message = (
            f"{transition} failed at step '{step}' ({cause}) and rollback failed "
            f"({rollback_error}). Possible duplicate, manual intervention required."
        )
        super().__init__(message, code="POSSIBLE_DUPLICATE")
        self.transition = transition
        self.step = step
        self.cause = cause
        self.rollback_error = rollback_error


class PartialTransitionError(DomainError):
    """Raised when a best-effort step failed after the destination was written."""

    def __init__(self, transition: str, step: str, cause: str):
        message = (
            f"{transition} wrote its destination but step '{step}' failed ({cause}). "
            f"A duplicate was left in place for manual cleanup."
        )
        super().__init__(message, code="PARTIAL_FAILURE")
        self.transition = transition
        self.step = step
        self.cause = cause
