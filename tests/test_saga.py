"""
Tests for the compensating-step runner used by store transitions.
"""
import asyncio

import pytest

from kpi_recon.domain.exceptions import (
    PartialTransitionError,
    PossibleDuplicateError,
    StoreError,
    TransitionAbortedError,
)
from kpi_recon.domain.services import Saga


def recorder(log, name, result=None, error=None):
    async def step(ctx):
        log.append(name)
        if error is not None:
            raise error
        return result
    return step


class TestSaga:
    """Step ordering, context and compensation."""

    def test_results_are_stored_in_context(self):
        async def second(ctx):
            return ctx["first"] + 1

        context = asyncio.run(
            Saga("Move").step("first", recorder([], "first", result=1)).step("second", second).run()
        )
        assert context == {"first": 1, "second": 2}

    def test_failure_before_compensable_step_reraises(self):
        log = []
        saga = Saga("Move").step("insert", recorder(log, "insert", error=StoreError("down")))
        with pytest.raises(StoreError):
            asyncio.run(saga.run())

    def test_completed_steps_are_compensated_in_reverse(self):
        log = []
        saga = (
            Saga("Move")
            .step("a", recorder(log, "a"), compensation=recorder(log, "undo a"))
            .step("b", recorder(log, "b"), compensation=recorder(log, "undo b"))
            .step("c", recorder(log, "c", error=StoreError("delete failed")))
        )

        with pytest.raises(TransitionAbortedError) as excinfo:
            asyncio.run(saga.run())

        assert log == ["a", "b", "c", "undo b", "undo a"]
        assert excinfo.value.step == "c"
        assert excinfo.value.cause == "delete failed"
        assert excinfo.value.code == "TRANSITION_ROLLED_BACK"

    def test_failed_compensation_is_a_possible_duplicate(self):
        log = []
        saga = (
            Saga("Restore")
            .step("insert", recorder(log, "insert"), compensation=recorder(log, "undo", error=StoreError("timeout")))
            .step("delete", recorder(log, "delete", error=StoreError("delete failed")))
        )

        with pytest.raises(PossibleDuplicateError) as excinfo:
            asyncio.run(saga.run())

        assert excinfo.value.rollback_error == "timeout"
        assert "manual intervention required" in excinfo.value.message

    def test_partial_step_keeps_earlier_work(self):
        log = []
        saga = (
            Saga("Reject")
            .step("insert", recorder(log, "insert"), compensation=recorder(log, "undo"))
            .step("delete", recorder(log, "delete", error=StoreError("delete failed")), partial=True)
        )

        with pytest.raises(PartialTransitionError) as excinfo:
            asyncio.run(saga.run())

        assert log == ["insert", "delete"]
        assert excinfo.value.code == "PARTIAL_FAILURE"

    def test_non_domain_errors_are_wrapped(self):
        log = []
        saga = (
            Saga("Move")
            .step("a", recorder(log, "a"), compensation=recorder(log, "undo a"))
            .step("b", recorder(log, "b", error=RuntimeError("boom")))
        )
        with pytest.raises(TransitionAbortedError) as excinfo:
            asyncio.run(saga.run())
        assert excinfo.value.cause == "boom"
