"""Steps, staged operations and their results.

A ``StagedOperation`` is the in-memory, ordered list of ``Step`` objects built
for one high-level request.  It is never persisted and is discarded once the
coordinator returns an ``OperationResult``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from mediadesk.errors import (
    CompensationFailure,
    OperationCancelledError,
    OperationFailedError,
    ValidationError,
)


class StepStatus(StrEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"
    TIMED_OUT = "timed_out"


class Outcome(StrEnum):
    OK = "ok"
    INCOMPLETE = "incomplete"
    PARTIAL_FAILURE = "partial_failure"
    FATAL_INCONSISTENCY = "fatal_inconsistency"
    CANCELLED = "cancelled"


@dataclass
class Step:
    """One forward action with its optional compensation.

    ``forward`` must be idempotent.  ``compensate`` receives whatever
    ``forward`` returned.
    """

    name: str
    target: str
    forward: Callable[[], Any]
    compensate: Callable[[Any], Any] | None = None
    timeout: float | None = None
    retryable: bool = True


@dataclass
class StepRecord:
    """What happened to one step."""

    name: str
    target: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    error: str | None = None
    compensation_error: str | None = None
    result: Any = field(default=None, repr=False)

    def describe(self) -> str:
        if self.status is StepStatus.SUCCEEDED and self.attempts > 1:
            return f"{self.name}: ok (after retry)"
        if self.status is StepStatus.SUCCEEDED:
            return f"{self.name}: ok"
        if self.error:
            return f"{self.name}: {self.status.value} ({self.error})"
        return f"{self.name}: {self.status.value}"


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted after each step completes, fails or overruns its timeout."""

    step_name: str
    percent_complete: int
    status: StepStatus
    attempts: int = 1

    @property
    def retried(self) -> bool:
        return self.attempts > 1


class StagedOperation:
    """An ordered list of steps for one request."""

    def __init__(self, name: str, steps: list[Step] | None = None, *, subject: str = "") -> None:
        self.name = name
        self.subject = subject
        self.steps: list[Step] = list(steps or [])
        self._lock = threading.Lock()
        self._started = False
        self._cancelled = False

    def add(self, step: Step) -> StagedOperation:
        with self._lock:
            if self._started:
                raise RuntimeError(f"Operation {self.name} already started")
            self.steps.append(step)
        return self

    def cancel(self) -> bool:
        """Cancel the operation if no step has been dispatched yet."""
        with self._lock:
            if self._started:
                return False
            self._cancelled = True
            return True

    def begin(self) -> bool:
        """Mark the operation as started; False if it was cancelled first."""
        with self._lock:
            if self._cancelled:
                return False
            self._started = True
            return True

    @property
    def started(self) -> bool:
        return self._started

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __len__(self) -> int:
        return len(self.steps)

    def __repr__(self) -> str:
        return f"StagedOperation({self.name!r}, steps={[s.name for s in self.steps]})"


@dataclass
class OperationResult:
    """Terminal result of a staged operation, with step-level detail."""

    operation: str
    outcome: Outcome
    records: list[StepRecord] = field(default_factory=list)
    progress: list[ProgressEvent] = field(default_factory=list)
    detail: str = ""
    error: BaseException | None = None
    retryable: bool = False
    missing: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def failed_step(self) -> StepRecord | None:
        for record in self.records:
            if record.status is StepStatus.FAILED:
                return record
        return None

    @property
    def compensations(self) -> list[StepRecord]:
        return [
            r for r in self.records
            if r.status in (StepStatus.COMPENSATED, StepStatus.COMPENSATION_FAILED)
        ]

    def summary(self) -> list[str]:
        """One line per step, in execution order."""
        return [record.describe() for record in self.records]

    def raise_for_outcome(self) -> None:
        """Raise the exception matching a non-ok outcome."""
        if self.outcome is Outcome.OK:
            return
        if self.outcome is Outcome.INCOMPLETE:
            raise ValidationError(self.missing)
        if self.outcome is Outcome.CANCELLED:
            raise OperationCancelledError(f"{self.operation} was cancelled before dispatch")
        if self.outcome is Outcome.FATAL_INCONSISTENCY:
            if isinstance(self.error, CompensationFailure):
                raise self.error
            raise CompensationFailure(self.detail, records=self.records)
        raise OperationFailedError(self.detail, records=self.records) from self.error
