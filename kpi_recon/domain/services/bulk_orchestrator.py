"""
Bulk Orchestrator - Applies one transition to many KPI records.

The scope is fetched in fixed-size pages until a short page comes back.
Each page is processed in smaller sub-batches with a pause between them;
items inside a batch run one after another and a failing item is recorded
and skipped. Cancellation is checked between batches only, so a
transition is never interrupted half-way.

BOQ aggregates are recomputed once per touched (project, activity) pair
after the run instead of after every item.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from kpi_recon.config import ReconConfig, get_config
from kpi_recon.domain.entities import SessionIdentity
from kpi_recon.infrastructure.store import Filter, RecordStore
from .approval_filter import requires_approval
from .approval_service import ApprovalService, OperationResult
from .record_normalizer import normalize

logger = logging.getLogger(__name__)


class BulkOperation(str, Enum):
    """Transitions available in bulk."""
    APPROVE = "approve"
    REJECT = "reject"
    RESTORE = "restore"
    APPROVE_REJECTED = "approve_rejected"
    DELETE_PENDING = "delete_pending"
    DELETE_REJECTED = "delete_rejected"

    @property
    def reads_rejected_store(self) -> bool:
        return self in (
            BulkOperation.RESTORE,
            BulkOperation.APPROVE_REJECTED,
            BulkOperation.DELETE_REJECTED,
        )

    @property
    def removes_from_source(self) -> bool:
        """Whether a successful item disappears from the scanned store."""
        return self != BulkOperation.APPROVE


@dataclass
class BulkScope:
    """
    Which records a bulk operation covers.

    Either explicit `ids`, or every row of the source store matching
    `filters`. Live-store scans only cover Actual rows; with
    `pending_only`, explicitly approved ones are skipped too.
    """
    ids: Optional[Sequence[str]] = None
    filters: Sequence[Filter] = ()
    pending_only: bool = True


@dataclass
class BulkProgress:
    """Snapshot handed to the progress callback."""
    operation: BulkOperation
    processed: int
    succeeded: int
    failed: int


@dataclass
class BulkOptions:
    """Tuning and callbacks for a bulk run; None falls back to configuration."""
    page_size: Optional[int] = None
    batch_size: Optional[int] = None
    delay_seconds: Optional[float] = None
    reason: Optional[str] = None
    identity: Optional[SessionIdentity] = None
    on_progress: Optional[Callable[[BulkProgress], Any]] = None
    cancel_event: Optional[asyncio.Event] = None
    recompute_aggregates: Optional[bool] = None


@dataclass
class BulkResult:
    """Outcome of a bulk run with per-item failures."""
    operation: BulkOperation
    succeeded: int = 0
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    processed: int = 0
    batches: int = 0
    cancelled: bool = False
    aggregates: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "succeeded": self.succeeded,
            "failed": list(self.failed),
            "errors": dict(self.errors),
            "processed": self.processed,
            "batches": self.batches,
            "cancelled": self.cancelled,
            "aggregates": list(self.aggregates),
        }


class _Run:
    """Mutable state of one bulk_apply call."""

    def __init__(self, operation: BulkOperation, options: BulkOptions):
        self.result = BulkResult(operation=operation)
        self.options = options
        self.seen: Set[str] = set()
        self.touched: List[Tuple[str, str]] = []

    @property
    def cancel_requested(self) -> bool:
        event = self.options.cancel_event
        return event is not None and event.is_set()


class BulkOrchestrator:
    """
    Drives ApprovalService transitions over large scopes.

    Usage:
        orchestrator = BulkOrchestrator(approval_service)
        result = await orchestrator.bulk_apply(BulkOperation.APPROVE, BulkScope())
    """

    def __init__(self, approval_service: ApprovalService, config: Optional[ReconConfig] = None):
        self.service = approval_service
        self.config = config or approval_service.config or get_config()

    def _source(self, operation: BulkOperation) -> RecordStore:
        if operation.reads_rejected_store:
            return self.service.rejected
        return self.service.live

    async def _apply_one(self, operation: BulkOperation, item_id: str, options: BulkOptions) -> OperationResult:
        service = self.service
        identity = options.identity
        if operation == BulkOperation.APPROVE:
            return await service.approve(item_id, identity, recompute_aggregate=False)
        if operation == BulkOperation.REJECT:
            return await service.reject(item_id, options.reason, identity, recompute_aggregate=False)
        if operation == BulkOperation.RESTORE:
            return await service.restore(item_id, identity, recompute_aggregate=False)
        if operation == BulkOperation.APPROVE_REJECTED:
            return await service.approve_rejected(item_id, identity, recompute_aggregate=False)
        if operation == BulkOperation.DELETE_PENDING:
            return await service.delete_pending(item_id, recompute_aggregate=False)
        return await service.delete_rejected(item_id)

    async def _report(self, run: _Run) -> None:
        callback = run.options.on_progress
        if callback is None:
            return
        result = run.result
        outcome = callback(BulkProgress(
            operation=result.operation,
            processed=result.processed,
            succeeded=result.succeeded,
            failed=len(result.failed),
        ))
        if inspect.isawaitable(outcome):
            await outcome

    async def _process(self, run: _Run, ids: List[str]) -> int:
        """
        Run the operation over ids in sub-batches.

        Returns:
            Number of items removed from the source store
        """
        operation = run.result.operation
        batch_size = max(1, run.options.batch_size or self.config.update_batch_size)
        delay = run.options.delay_seconds
        if delay is None:
            delay = self.config.inter_batch_delay_seconds
        removed = 0

        for start in range(0, len(ids), batch_size):
            if run.cancel_requested:
                run.result.cancelled = True
                logger.info(f"Bulk {operation.value} cancelled after {run.result.processed} items")
                return removed
            if run.result.batches and delay > 0:
                await asyncio.sleep(delay)

            for item_id in ids[start:start + batch_size]:
                try:
                    outcome = await self._apply_one(operation, item_id, run.options)
                except Exception as e:
                    logger.exception(f"Bulk {operation.value} crashed on {item_id}")
                    outcome = OperationResult(False, str(e), code="UNEXPECTED_ERROR")
                run.result.processed += 1
                if outcome.success:
                    run.result.succeeded += 1
                    if operation.removes_from_source:
                        removed += 1
                    pair = (
                        outcome.details.get("project_full_code"),
                        outcome.details.get("activity_name"),
                    )
                    if all(pair) and pair not in run.touched:
                        run.touched.append(pair)
                else:
                    run.result.failed.append(item_id)
                    run.result.errors[item_id] = outcome.message

            run.result.batches += 1
            await self._report(run)
            logger.info(
                f"Bulk {operation.value}: {run.result.processed} processed, "
                f"{run.result.succeeded} succeeded, {len(run.result.failed)} failed"
            )
        return removed

    def _wanted(self, run: _Run, row: Dict[str, Any], store: RecordStore, scope: BulkScope) -> bool:
        item_id = str(row[store.id_column])
        if item_id in run.seen:
            return False
        if run.result.operation.reads_rejected_store:
            return True
        record = normalize(row)
        if not record.is_actual:
            return False
        return not scope.pending_only or requires_approval(record)

    async def bulk_apply(
        self,
        operation: BulkOperation,
        scope: Optional[BulkScope] = None,
        options: Optional[BulkOptions] = None,
    ) -> BulkResult:
        """
        Apply `operation` to every record in `scope`.

        Args:
            operation: Transition to apply
            scope: Explicit ids or filters over the source store
            options: Paging, batching, progress and cancellation

        Returns:
            BulkResult with the success count and each failed id
        """
        scope = scope or BulkScope()
        options = options or BulkOptions()
        run = _Run(BulkOperation(operation), options)
        store = self._source(run.result.operation)
        page_size = max(1, options.page_size or self.config.fetch_page_size)

        logger.info(f"Bulk {run.result.operation.value} started on '{store.table}'")

        if scope.ids is not None:
            ids = [str(i) for i in dict.fromkeys(scope.ids)]
            for start in range(0, len(ids), page_size):
                await self._process(run, ids[start:start + page_size])
                if run.result.cancelled:
                    break
        else:
            offset = 0
            while not run.result.cancelled:
                page = await store.select(scope.filters, offset=offset, limit=page_size)
                ids = []
                for row in page:
                    if self._wanted(run, row, store, scope):
                        ids.append(str(row[store.id_column]))
                run.seen.update(str(row[store.id_column]) for row in page)
                removed = await self._process(run, ids)
                if len(page) < page_size:
                    break
                offset += len(page) - removed

        await self._recompute(run)
        logger.info(
            f"Bulk {run.result.operation.value} finished: {run.result.succeeded} succeeded, "
            f"{len(run.result.failed)} failed"
        )
        return run.result

    async def _recompute(self, run: _Run) -> None:
        aggregator = self.service.aggregator
        wanted = run.options.recompute_aggregates
        if wanted is None:
            wanted = self.config.recompute_aggregates
        if aggregator is None or not wanted:
            return
        for project_key, activity_name in run.touched:
            outcome = await aggregator.recompute(project_key, activity_name)
            if not outcome.matched:
                logger.warning(f"Bulk recompute: {outcome.message} ({project_key} / {activity_name})")
            run.result.aggregates.append(outcome.to_dict())
