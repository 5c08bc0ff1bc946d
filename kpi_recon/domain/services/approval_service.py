"""
Approval Service - KPI approval state machine across the live and rejected stores.

States and transitions:
    Pending  --approve-->          Approved (stays in the live store)
    Pending  --reject-->           Rejected (moves to the rejected store)
    Rejected --restore-->          Pending  (new live row, approval cleared)
    Rejected --approve_rejected--> Approved (new live row, approved)

No transition deletes a row before its destination is durably written.
Moves are run as sagas (see saga.py); every public operation returns an
OperationResult instead of raising.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from kpi_recon.config import ReconConfig, get_config
from kpi_recon.domain.entities import (
    ApprovalStatus,
    KPIRecord,
    RejectedKPIRecord,
    SessionIdentity,
)
from kpi_recon.domain.exceptions import (
    DomainError,
    KPINotFoundError,
    RejectedKPINotFoundError,
    StoreError,
    ValidationError,
    is_schema_error,
)
from kpi_recon.infrastructure.store import And, Or, RecordStore
from .approval_filter import encode_approval_note, requires_approval, with_approval_note
from .boq_aggregation_service import BOQAggregationService
from .record_normalizer import (
    APPROVAL_FIELDS,
    REJECTION_FIELDS,
    column_for,
    field_filter,
    get_field,
    is_empty,
    normalize,
    normalize_rejected,
    present_keys,
    strip_fields,
    to_store_payload,
)
from .saga import Saga
from .user_directory import resolve_actor

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Structured outcome of a public operation."""
    success: bool
    message: str
    code: str = "OK"
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: DomainError, **details: Any) -> "OperationResult":
        for attr in ("transition", "step", "cause", "rollback_error", "field"):
            if getattr(error, attr, None) is not None:
                details.setdefault(attr, getattr(error, attr))
        return cls(success=False, message=error.message, code=error.code, details=details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class ApprovalService:
    """
    Approve, reject, restore and approve-from-rejected KPI records.

    Args:
        live_store: Live KPI table
        rejected_store: Rejected KPI table
        aggregator: Recomputes BOQ totals after a transition (optional)
        config: Injected configuration (defaults to get_config())
        clock: Current-time source, injectable for tests
    """

    def __init__(
        self,
        live_store: RecordStore,
        rejected_store: RecordStore,
        aggregator: Optional[BOQAggregationService] = None,
        config: Optional[ReconConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.live = live_store
        self.rejected = rejected_store
        self.aggregator = aggregator
        self.config = config or get_config()
        self._clock = clock

    # =========================================================================
    # Helpers
    # =========================================================================

    def _actor(self, identity: Optional[SessionIdentity]) -> str:
        return resolve_actor(identity, self.config.default_actor)

    def _today(self) -> str:
        return self._clock().date().isoformat()

    async def _live_row(self, kpi_id: str) -> Dict[str, Any]:
        row = await self.live.get_by_id(kpi_id)
        if row is None:
            raise KPINotFoundError(kpi_id)
        return row

    async def _pending_row(self, kpi_id: str) -> Dict[str, Any]:
        row = await self._live_row(kpi_id)
        if not normalize(row).is_actual:
            raise ValidationError("input_type", "only Actual KPIs take part in approval")
        return row

    async def _rejected_row(self, rejected_id: str) -> Dict[str, Any]:
        row = await self.rejected.get_by_id(rejected_id)
        if row is None:
            raise RejectedKPINotFoundError(rejected_id)
        return row

    def _should_recompute(self, recompute_aggregate: Optional[bool]) -> bool:
        if self.aggregator is None:
            return False
        if recompute_aggregate is None:
            return self.config.recompute_aggregates
        return recompute_aggregate

    async def _refresh_aggregate(
        self,
        record: KPIRecord,
        recompute_aggregate: Optional[bool],
    ) -> Optional[Dict[str, Any]]:
        """Recompute the BOQ aggregate of the record's activity; never fatal."""
        if not self._should_recompute(recompute_aggregate):
            return None
        project_key = record.project_full_code or record.project_code
        if not project_key or not record.activity_name:
            return None
        result = await self.aggregator.recompute(project_key, record.activity_name)
        if not result.success:
            logger.warning(f"Aggregate refresh failed for KPI {record.id}: {result.message}")
        return result.to_dict()

    @staticmethod
    def _pair(record: KPIRecord) -> Dict[str, str]:
        return {
            "project_full_code": record.project_full_code or record.project_code,
            "activity_name": record.activity_name,
        }

    async def _verify(self, kpi_id: str) -> None:
        """Read the row back after a status write; failures are only logged."""
        try:
            row = await self.live.get_by_id(kpi_id)
        except StoreError as e:
            logger.warning(f"Verification read for KPI {kpi_id} failed: {e.message}")
            return
        if row is None:
            logger.warning(f"Verification read for KPI {kpi_id} returned nothing")
            return
        status = normalize(row).approval_status
        if status != ApprovalStatus.APPROVED.value:
            logger.warning(f"KPI {kpi_id} reads back with approval status {status!r}")

    # =========================================================================
    # Status writing
    # =========================================================================

    async def _write_approval(self, row: Mapping[str, Any], kpi_id: str, actor: str) -> Dict[str, Any]:
        """
        Mark a live row approved.

        Writes the approval columns; when the store reports them missing,
        falls back to the Notes marker (plus the individual columns that do
        exist). Other store errors propagate.
        """
        approval_date = self._today()
        naming = self.config.write_naming
        values = {
            column_for(row, "approval_status", naming): ApprovalStatus.APPROVED.value,
            column_for(row, "approved_by", naming): actor,
            column_for(row, "approval_date", naming): approval_date,
        }
        try:
            updated = await self.live.update_by_id(kpi_id, values)
        except StoreError as e:
            if not is_schema_error(e.message, self.config.schema_error_keywords):
                raise
            logger.warning(
                f"Approval columns unavailable for KPI {kpi_id} ({e.message}); using Notes"
            )
            await self._write_approval_note(row, kpi_id, actor, approval_date)
            return {"approved_by": actor, "approval_date": approval_date, "fallback": "notes"}

        if not updated:
            raise KPINotFoundError(kpi_id)
        await self._verify(kpi_id)
        return {"approved_by": actor, "approval_date": approval_date, "fallback": None}

    async def _write_approval_note(
        self,
        row: Mapping[str, Any],
        kpi_id: str,
        actor: str,
        approval_date: str,
    ) -> None:
        naming = self.config.write_naming
        for field_name, value in (("approved_by", actor), ("approval_date", approval_date)):
            column = column_for(row, field_name, naming)
            try:
                await self.live.update_by_id(kpi_id, {column: value})
            except StoreError as e:
                logger.warning(f"Column '{column}' not written for KPI {kpi_id}: {e.message}")

        marker = encode_approval_note(actor, approval_date)
        notes = with_approval_note(get_field(row, "notes"), marker)
        updated = await self.live.update_by_id(kpi_id, {column_for(row, "notes", naming): notes})
        if not updated:
            raise KPINotFoundError(kpi_id)

    # =========================================================================
    # Payload building
    # =========================================================================

    def _rejected_payload(self, row: Mapping[str, Any], kpi_id: str, reason: Optional[str], actor: str) -> Dict[str, Any]:
        naming = self.config.write_naming
        payload = {k: v for k, v in row.items() if k != self.live.id_column}
        payload[column_for(row, "rejection_reason", naming)] = (
            reason.strip() if reason and reason.strip() else self.config.default_rejection_reason
        )
        payload[column_for(row, "rejected_by", naming)] = actor
        payload[column_for(row, "rejected_date", naming)] = self._clock().isoformat()
        if self.config.record_original_kpi_id:
            payload[column_for(row, "original_kpi_id", naming)] = str(kpi_id)

        placeholder = self.config.placeholder_actor
        for field_name in ("created_by", "updated_by"):
            for key in present_keys(row, field_name):
                value = row[key]
                if not is_empty(value) and str(value).strip() != placeholder:
                    payload[key] = value
        return payload

    def _live_payload(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Live-table payload for a rejected row.

        Drops rejection metadata, the id, approval fields and the deny-listed
        columns, then puts the critical fields back.
        """
        payload = strip_fields(row, REJECTION_FIELDS + APPROVAL_FIELDS)
        payload.pop(self.rejected.id_column, None)
        deny = self.config.invalid_live_columns
        payload = {k: v for k, v in payload.items() if k not in deny}
        for key in self.config.critical_fields:
            if key in row and not is_empty(row[key]):
                payload[key] = row[key]
        return payload

    async def _delete_inserted(self, inserted: Optional[Mapping[str, Any]], payload: Mapping[str, Any]) -> None:
        """Compensation for a live insert: by new id, else by best match."""
        new_id = (inserted or {}).get(self.live.id_column)
        if new_id:
            deleted = await self.live.delete_by_id(new_id)
            if not deleted:
                raise StoreError(f"Rollback found no live row with id '{new_id}'", table=self.live.table)
            return
        await self._delete_newest_match(payload)

    async def _delete_newest_match(self, payload: Mapping[str, Any]) -> None:
        """Remove the newest live row with the payload's project, activity and date."""
        target = normalize(payload)
        project_key = target.project_full_code or target.project_code
        rows = await self.live.select_all(
            [
                And(
                    Or(
                        field_filter("project_full_code", project_key),
                        field_filter("project_code", project_key),
                    ),
                    field_filter("activity_name", target.activity_name),
                )
            ],
            page_size=self.config.fetch_page_size,
        )
        candidates = [
            row for row in rows
            if normalize(row).effective_date == target.effective_date
        ]
        if not candidates:
            raise StoreError(
                f"Rollback found no live row for {project_key} / {target.activity_name}",
                table=self.live.table,
            )
        candidates.sort(key=lambda r: normalize(r).created_at)
        newest = candidates[-1]
        await self.live.delete_by_id(newest[self.live.id_column])
        logger.info(f"Rolled back live row {newest[self.live.id_column]} by match")

    # =========================================================================
    # Transitions
    # =========================================================================

    async def approve(
        self,
        kpi_id: str,
        identity: Optional[SessionIdentity] = None,
        edited_fields: Optional[Mapping[str, Any]] = None,
        recompute_aggregate: Optional[bool] = None,
    ) -> OperationResult:
        """
        Approve a pending KPI in place.

        Args:
            kpi_id: Live row id
            identity: Session identity of the approver
            edited_fields: Field edits applied before approving
            recompute_aggregate: Override the configured aggregate refresh

        Returns:
            OperationResult with approved_by, approval_date and fallback in details
        """
        try:
            row = await self._pending_row(kpi_id)
            actor = self._actor(identity)
            if edited_fields:
                payload = to_store_payload(row, edited_fields, self.config.write_naming)
                if payload:
                    await self.live.update_by_id(kpi_id, payload)
                    row = {**row, **payload}
            details = await self._write_approval(row, kpi_id, actor)
        except DomainError as e:
            logger.error(f"Approve of KPI {kpi_id} failed: {e.message}")
            return OperationResult.failure(e, kpi_id=kpi_id)

        record = normalize(row)
        details.update(kpi_id=kpi_id, **self._pair(record))
        details["aggregate"] = await self._refresh_aggregate(record, recompute_aggregate)
        logger.info(f"KPI {kpi_id} approved by {actor}")
        return OperationResult(True, f"KPI approved by {actor}", details=details)

    async def reject(
        self,
        kpi_id: str,
        reason: Optional[str] = None,
        identity: Optional[SessionIdentity] = None,
        recompute_aggregate: Optional[bool] = None,
    ) -> OperationResult:
        """
        Move a pending KPI to the rejected store.

        The rejected copy is inserted before the live row is deleted; if the
        delete fails the duplicate is left in place (PARTIAL_FAILURE).
        """
        try:
            row = await self._pending_row(kpi_id)
            actor = self._actor(identity)
            payload = self._rejected_payload(row, kpi_id, reason, actor)

            async def insert_rejected(ctx):
                return await self.rejected.insert(payload)

            async def delete_live(ctx):
                return await self.live.delete_by_id(kpi_id)

            context = await (
                Saga("Reject")
                .step("insert_rejected", insert_rejected)
                .step("delete_live", delete_live, partial=True)
                .run()
            )
        except DomainError as e:
            logger.error(f"Reject of KPI {kpi_id} failed: {e.message}")
            return OperationResult.failure(e, kpi_id=kpi_id)

        inserted = context["insert_rejected"] or {}
        record = normalize(row)
        details = {
            "kpi_id": kpi_id,
            "rejected_id": inserted.get(self.rejected.id_column),
            "rejection_reason": get_field(payload, "rejection_reason"),
            "rejected_by": actor,
            **self._pair(record),
        }
        details["aggregate"] = await self._refresh_aggregate(record, recompute_aggregate)
        logger.info(f"KPI {kpi_id} rejected by {actor}")
        return OperationResult(True, f"KPI rejected by {actor}", details=details)

    async def restore(
        self,
        rejected_id: str,
        identity: Optional[SessionIdentity] = None,
        recompute_aggregate: Optional[bool] = None,
    ) -> OperationResult:
        """
        Move a rejected KPI back to the live store as a new pending row.

        If deleting the rejected copy fails, the new live row is removed
        again (TRANSITION_ROLLED_BACK); if that also fails the result is
        POSSIBLE_DUPLICATE.
        """
        try:
            row = await self._rejected_row(rejected_id)
            payload = self._live_payload(row)
            saga = self._move_saga("Restore", rejected_id, payload)
            context = await saga.run()
        except DomainError as e:
            logger.error(f"Restore of rejected KPI {rejected_id} failed: {e.message}")
            return OperationResult.failure(e, rejected_id=rejected_id)

        record = normalize(context["insert_live"] or payload)
        details = {"rejected_id": rejected_id, "kpi_id": record.id, **self._pair(record)}
        details["aggregate"] = await self._refresh_aggregate(record, recompute_aggregate)
        logger.info(f"Rejected KPI {rejected_id} restored as {record.id} by {self._actor(identity)}")
        return OperationResult(True, "KPI restored to pending", details=details)

    async def approve_rejected(
        self,
        rejected_id: str,
        identity: Optional[SessionIdentity] = None,
        edited_fields: Optional[Mapping[str, Any]] = None,
        recompute_aggregate: Optional[bool] = None,
    ) -> OperationResult:
        """
        Restore a rejected KPI and approve it in one action.

        A failed approval or a failed delete of the rejected copy rolls the
        new live row back.
        """
        actor = self._actor(identity)
        try:
            row = await self._rejected_row(rejected_id)
            payload = self._live_payload(row)
            if edited_fields:
                payload.update(to_store_payload(payload, edited_fields, self.config.write_naming))

            async def approve_live(ctx):
                inserted = ctx["insert_live"] or {}
                new_id = inserted.get(self.live.id_column)
                if not new_id:
                    raise StoreError("Inserted live row carries no id", table=self.live.table)
                return await self._write_approval({**payload, **inserted}, new_id, actor)

            saga = self._move_saga("Approve rejected", rejected_id, payload, approve_live)
            context = await saga.run()
        except DomainError as e:
            logger.error(f"Approve of rejected KPI {rejected_id} failed: {e.message}")
            return OperationResult.failure(e, rejected_id=rejected_id)

        record = normalize(context["insert_live"] or payload)
        details = {
            "rejected_id": rejected_id,
            "kpi_id": record.id,
            **context["approve_live"],
            **self._pair(record),
        }
        details["aggregate"] = await self._refresh_aggregate(record, recompute_aggregate)
        logger.info(f"Rejected KPI {rejected_id} approved as {record.id} by {actor}")
        return OperationResult(True, f"KPI restored and approved by {actor}", details=details)

    def _move_saga(self, name: str, rejected_id: str, payload: Dict[str, Any], approve_step=None) -> Saga:
        """Insert into live (compensable), optionally approve, delete from rejected."""

        async def insert_live(ctx):
            return await self.live.insert(payload)

        async def rollback_insert(ctx):
            await self._delete_inserted(ctx.get("insert_live"), payload)

        async def delete_rejected(ctx):
            return await self.rejected.delete_by_id(rejected_id)

        saga = Saga(name).step("insert_live", insert_live, compensation=rollback_insert)
        if approve_step is not None:
            saga.step("approve_live", approve_step)
        return saga.step("delete_rejected", delete_rejected)

    # =========================================================================
    # Edit / delete
    # =========================================================================

    async def _update(
        self,
        store: RecordStore,
        row: Mapping[str, Any],
        record_id: str,
        edited_fields: Mapping[str, Any],
        identity: Optional[SessionIdentity],
    ) -> Dict[str, Any]:
        if not edited_fields:
            raise ValidationError("edited_fields", "no fields to update")
        naming = self.config.write_naming
        payload = to_store_payload(row, edited_fields, naming)
        if identity is not None:
            payload[column_for(row, "updated_by", naming)] = self._actor(identity)
        await store.update_by_id(record_id, payload)
        return {**row, **payload}

    async def update_pending(
        self,
        kpi_id: str,
        edited_fields: Mapping[str, Any],
        identity: Optional[SessionIdentity] = None,
        recompute_aggregate: Optional[bool] = None,
    ) -> OperationResult:
        """Apply field edits to a live KPI row."""
        try:
            row = await self._live_row(kpi_id)
            updated = await self._update(self.live, row, kpi_id, edited_fields, identity)
        except DomainError as e:
            logger.error(f"Update of KPI {kpi_id} failed: {e.message}")
            return OperationResult.failure(e, kpi_id=kpi_id)

        before, after = normalize(row), normalize(updated)
        details = {"kpi_id": kpi_id, **self._pair(after)}
        details["aggregate"] = await self._refresh_aggregate(after, recompute_aggregate)
        if self._pair(before) != self._pair(after):
            await self._refresh_aggregate(before, recompute_aggregate)
        return OperationResult(True, "KPI updated", details=details)

    async def update_rejected(
        self,
        rejected_id: str,
        edited_fields: Mapping[str, Any],
        identity: Optional[SessionIdentity] = None,
    ) -> OperationResult:
        """Apply field edits to a rejected KPI row."""
        try:
            row = await self._rejected_row(rejected_id)
            await self._update(self.rejected, row, rejected_id, edited_fields, identity)
        except DomainError as e:
            logger.error(f"Update of rejected KPI {rejected_id} failed: {e.message}")
            return OperationResult.failure(e, rejected_id=rejected_id)
        return OperationResult(True, "Rejected KPI updated", details={"rejected_id": rejected_id})

    async def delete_pending(
        self,
        kpi_id: str,
        recompute_aggregate: Optional[bool] = None,
    ) -> OperationResult:
        """Permanently delete a live KPI row."""
        try:
            row = await self._live_row(kpi_id)
            await self.live.delete_by_id(kpi_id)
        except DomainError as e:
            logger.error(f"Delete of KPI {kpi_id} failed: {e.message}")
            return OperationResult.failure(e, kpi_id=kpi_id)

        record = normalize(row)
        details = {"kpi_id": kpi_id, **self._pair(record)}
        details["aggregate"] = await self._refresh_aggregate(record, recompute_aggregate)
        logger.info(f"KPI {kpi_id} deleted")
        return OperationResult(True, "KPI deleted", details=details)

    async def delete_rejected(self, rejected_id: str) -> OperationResult:
        """Permanently delete a rejected KPI row."""
        try:
            await self._rejected_row(rejected_id)
            await self.rejected.delete_by_id(rejected_id)
        except DomainError as e:
            logger.error(f"Delete of rejected KPI {rejected_id} failed: {e.message}")
            return OperationResult.failure(e, rejected_id=rejected_id)
        logger.info(f"Rejected KPI {rejected_id} deleted")
        return OperationResult(True, "Rejected KPI deleted", details={"rejected_id": rejected_id})

    # =========================================================================
    # Listing
    # =========================================================================

    @staticmethod
    def needs_decision(row: Mapping[str, Any]) -> bool:
        """An Actual live row with no approval recorded."""
        record = normalize(row)
        return record.is_actual and requires_approval(record)

    async def fetch_pending(self) -> List[KPIRecord]:
        """
        All Actual live rows that still need a decision, newest first.

        Fetches page by page until a short page; raises StoreError if the
        store fails.
        """
        rows = await self.live.select_all(page_size=self.config.fetch_page_size)
        pending = [normalize(row) for row in rows if self.needs_decision(row)]
        pending.sort(key=lambda r: r.created_at, reverse=True)
        return pending

    async def fetch_rejected(self) -> List[RejectedKPIRecord]:
        """All rejected rows, newest rejection first."""
        rows = await self.rejected.select_all(page_size=self.config.fetch_page_size)
        records = [normalize_rejected(row) for row in rows]
        records.sort(key=lambda r: r.rejected_date, reverse=True)
        return records
