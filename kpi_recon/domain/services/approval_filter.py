"""
Approval Filter - Decides which KPI rows still need an approval decision.

A row is pending unless it is explicitly approved, either through the
approval status column or through the marker older schemas wrote into the
Notes column:

    APPROVED:approved:by:<actor>:date:<YYYY-MM-DD>

The marker is handled by a small encode/parse pair so the fallback path
can be exercised on its own.
"""
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Union

from kpi_recon.domain.entities import ApprovalStatus, KPIRecord
from .record_normalizer import normalize

MARKER_PREFIX = "APPROVED:"
MARKER_STATUS = ":approved:"
NOTE_SEPARATOR = " | "

_MARKER_PATTERN = re.compile(
    r"APPROVED:(?P<status>[^:\s]+):by:(?P<actor>[^\s|]*?):date:(?P<date>[^\s|]*)"
)


@dataclass(frozen=True)
class ApprovalNote:
    """Approval metadata carried in the Notes column."""
    actor: str
    date: str
    status: str = ApprovalStatus.APPROVED.value

    def encode(self) -> str:
        return f"APPROVED:{self.status}:by:{self.actor}:date:{self.date}"


def encode_approval_note(actor: str, approval_date: str) -> str:
    """Serialize an approval into the Notes marker format."""
    return ApprovalNote(actor=actor, date=approval_date).encode()


def parse_approval_note(notes: Optional[str]) -> Optional[ApprovalNote]:
    """Extract the approval marker from a Notes value, if any."""
    if not notes:
        return None
    match = _MARKER_PATTERN.search(notes)
    if not match:
        return None
    return ApprovalNote(
        actor=match.group("actor"),
        date=match.group("date"),
        status=match.group("status"),
    )


def has_approval_marker(notes: Optional[str]) -> bool:
    """True if the notes carry the legacy approval marker."""
    if not notes:
        return False
    return MARKER_PREFIX in notes and MARKER_STATUS in notes


def with_approval_note(existing_notes: Optional[str], marker: str) -> str:
    """
    Combine free-text notes with an approval marker.

    An existing marker is replaced; other text is kept ahead of the marker.
    """
    notes = (existing_notes or "").strip()
    if not notes:
        return marker
    if _MARKER_PATTERN.search(notes):
        return _MARKER_PATTERN.sub(marker, notes, count=1)
    return f"{notes}{NOTE_SEPARATOR}{marker}"


def is_explicitly_approved(record: Union[KPIRecord, Mapping[str, Any]]) -> bool:
    """Approved by status column (any case/whitespace) or by notes marker."""
    if not isinstance(record, KPIRecord):
        record = normalize(record)
    if record.approval_status == ApprovalStatus.APPROVED.value:
        return True
    return has_approval_marker(record.notes)


def requires_approval(record: Union[KPIRecord, Mapping[str, Any]]) -> bool:
    """Default is pending; only an explicit approval excludes a row."""
    return not is_explicitly_approved(record)


def select_pending(rows: Iterable[Union[KPIRecord, Mapping[str, Any]]]) -> List[KPIRecord]:
    """
    Normalize rows and keep those that still need a decision.

    The caller passes the complete result set; see
    `ApprovalService.fetch_pending` for the chunked fetch.
    """
    records = [normalize(row) for row in rows]
    return [record for record in records if requires_approval(record)]
