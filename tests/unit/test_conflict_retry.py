"""
Conflict retry helpers used by the sweeps.
"""

import pytest

from contract_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidStateError,
    ValidationError,
)
from contract_kernel.utils.retry import retry_on_conflict, run_sweep_item


class FlakyOperation:
    """Fails with a conflict ``failures`` times, then returns ``result``."""

    def __init__(self, failures: int, result="done"):
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConcurrentModificationError("Contract", "c-1", "active", "suspended")
        return self.result


@pytest.fixture
def sleeps():
    return []


class TestRetryOnConflict:
    def test_success_needs_no_retry(self, sleeps):
        op = FlakyOperation(failures=0)
        assert retry_on_conflict(op, sleep=sleeps.append) == "done"
        assert op.calls == 1
        assert sleeps == []

    def test_linear_backoff(self, sleeps):
        op = FlakyOperation(failures=2)
        assert retry_on_conflict(op, attempts=3, backoff_seconds=0.5, sleep=sleeps.append) == "done"
        assert op.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_exhaustion_reraises_last_conflict(self, sleeps):
        op = FlakyOperation(failures=5)
        with pytest.raises(ConcurrentModificationError):
            retry_on_conflict(op, attempts=3, sleep=sleeps.append)
        assert op.calls == 3
        assert len(sleeps) == 2

    def test_other_errors_are_not_retried(self, sleeps):
        calls = []

        def op():
            calls.append(1)
            raise InvalidStateError("Contract", "c-1", "draft", "suspend")

        with pytest.raises(InvalidStateError):
            retry_on_conflict(op, sleep=sleeps.append)
        assert len(calls) == 1

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            retry_on_conflict(lambda: None, attempts=0)


class TestRunSweepItem:
    def test_returns_result(self, sleeps):
        assert run_sweep_item(FlakyOperation(failures=1), sleep=sleeps.append) == "done"

    def test_conflict_exhaustion_gives_none(self, sleeps):
        assert run_sweep_item(FlakyOperation(failures=9), attempts=2, sleep=sleeps.append) is None

    def test_kernel_error_gives_none(self, captured_logs):
        def op():
            raise ValidationError("bad row")

        assert run_sweep_item(op, label="expire_contract") is None
        failures = [r for r in captured_logs() if r["message"] == "sweep_item_failed"]
        assert failures and failures[0]["error_code"] == "VALIDATION_ERROR"

    def test_unexpected_errors_propagate(self):
        def op():
            raise RuntimeError("database went away")

        with pytest.raises(RuntimeError):
            run_sweep_item(op)
