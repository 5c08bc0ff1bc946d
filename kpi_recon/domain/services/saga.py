"""
Saga - Runs a multi-step store transition with compensating actions.

The live and rejected stores share no transaction, so each transition is
a short sequence of steps. When a step fails:

- steps marked `partial` raise PartialTransitionError and undo nothing
  (the destination is already durable, the leftover is a duplicate);
- otherwise completed steps are compensated in reverse order and
  TransitionAbortedError is raised;
- if a compensation itself fails, PossibleDuplicateError is raised and
  nothing is retried;
- a failure before any compensable step re-raises the original error.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from kpi_recon.domain.exceptions import (
    PartialTransitionError,
    PossibleDuplicateError,
    TransitionAbortedError,
)

logger = logging.getLogger(__name__)

Context = Dict[str, Any]
StepAction = Callable[[Context], Awaitable[Any]]


@dataclass
class SagaStep:
    """One step of a transition and its optional undo."""
    name: str
    action: StepAction
    compensation: Optional[StepAction] = None
    partial: bool = False


class Saga:
    """
    Ordered steps sharing a context dict.

    Each step's return value is stored in the context under the step name,
    so later steps and compensations can use it (e.g. a newly inserted id).
    """

    def __init__(self, name: str, context: Optional[Context] = None):
        self.name = name
        self.context: Context = dict(context or {})
        self.steps: List[SagaStep] = []

    def step(
        self,
        name: str,
        action: StepAction,
        compensation: Optional[StepAction] = None,
        partial: bool = False,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, compensation, partial))
        return self

    async def run(self) -> Context:
        completed: List[SagaStep] = []
        for step in self.steps:
            try:
                self.context[step.name] = await step.action(self.context)
            except Exception as e:
                cause = getattr(e, "message", None) or str(e)
                logger.error(f"{self.name}: step '{step.name}' failed: {cause}")
                if step.partial:
                    raise PartialTransitionError(self.name, step.name, cause) from e
                undoable = [s for s in completed if s.compensation is not None]
                if not undoable:
                    raise
                await self._compensate(undoable, step.name, cause, e)
                raise TransitionAbortedError(self.name, step.name, cause) from e
            completed.append(step)
        return self.context

    async def _compensate(
        self,
        undoable: List[SagaStep],
        failed_step: str,
        cause: str,
        original: Exception,
    ) -> None:
        for done in reversed(undoable):
            try:
                await done.compensation(self.context)
                logger.info(f"{self.name}: compensated step '{done.name}'")
            except Exception as rollback_error:
                rollback_cause = getattr(rollback_error, "message", None) or str(rollback_error)
                logger.error(
                    f"{self.name}: compensation of '{done.name}' failed: {rollback_cause}. "
                    f"Possible duplicate, manual intervention required."
                )
                raise PossibleDuplicateError(
                    self.name, failed_step, cause, rollback_cause
                ) from original
