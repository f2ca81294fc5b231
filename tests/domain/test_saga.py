"""
Saga tests.

Tests cover:
- Completed outcome lists every step in order
- PartiallyFailed names done / failed / remaining steps and compensations
- raise_for_outcome: first-step failures re-raise, later ones wrap
"""

import pytest

from books_kernel.domain.saga import Completed, PartiallyFailed, Saga, SagaStep
from books_kernel.exceptions import PartialFailureError
from books_kernel.services.posting_engine import raise_for_outcome


def _boom():
    raise RuntimeError("disk full")


class TestSagaRun:
    def test_all_steps_complete(self):
        calls = []
        saga = Saga("post", [
            SagaStep("a", lambda: calls.append("a")),
            SagaStep("b", lambda: calls.append("b")),
        ])
        outcome = saga.run()
        assert outcome == Completed(steps=("a", "b"))
        assert outcome.ok
        assert calls == ["a", "b"]

    def test_stops_at_first_failure(self):
        calls = []
        saga = Saga("post", [
            SagaStep("a", lambda: calls.append("a"), compensation="undo a"),
            SagaStep("b", lambda: calls.append("b")),
            SagaStep("c", _boom, compensation="undo c"),
            SagaStep("d", lambda: calls.append("d")),
        ])
        outcome = saga.run()

        assert isinstance(outcome, PartiallyFailed)
        assert not outcome.ok
        assert outcome.steps_done == ("a", "b")
        assert outcome.failed_step == "c"
        assert outcome.steps_remaining == ("d",)
        assert outcome.compensations == ("undo a",)
        assert isinstance(outcome.cause, RuntimeError)
        assert calls == ["a", "b"]

    def test_failure_is_logged(self, captured_logs):
        Saga("post", [SagaStep("a", _boom)]).run()
        records = [r for r in captured_logs() if r["message"] == "saga_step_failed"]
        assert len(records) == 1
        assert records[0]["level"] == "ERROR"

    def test_non_exception_errors_propagate(self):
        def _interrupt():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            Saga("post", [SagaStep("a", _interrupt)]).run()


class TestRaiseForOutcome:
    def test_completed_is_silent(self):
        raise_for_outcome(Completed(steps=("a",)), "BILL-1", [])

    def test_first_step_failure_reraises_cause(self):
        cause = ValueError("bad input")
        outcome = PartiallyFailed((), "a", ("b",), cause)
        with pytest.raises(ValueError, match="bad input"):
            raise_for_outcome(outcome, "BILL-1", [])

    def test_later_failure_wraps(self):
        cause = RuntimeError("disk full")
        outcome = PartiallyFailed(("a",), "b", ("c",), cause)
        with pytest.raises(PartialFailureError) as exc_info:
            raise_for_outcome(outcome, "BILL-1", ["acct"])
        err = exc_info.value
        assert err.failed_step == "b"
        assert err.steps_done == ["a"]
        assert err.steps_remaining == ["c"]
        assert err.mutated_accounts == ["acct"]
        assert err.__cause__ is cause
