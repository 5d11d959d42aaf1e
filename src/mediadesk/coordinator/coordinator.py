"""Staged mutation coordinator.

Runs the steps of one ``StagedOperation`` strictly in order against the leaf
clients.  Transient failures are retried a bounded number of times; when a
step fails for good, the compensations of every earlier step run in reverse
order before the failure is reported.  Compensation failures are returned
as a ``fatal_inconsistency`` result carrying a ``CompensationFailure``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from mediadesk.coordinator.steps import (
    OperationResult,
    Outcome,
    ProgressEvent,
    StagedOperation,
    Step,
    StepRecord,
    StepStatus,
)
from mediadesk.errors import (
    CompensationFailure,
    InvariantViolation,
    MediadeskError,
    StepTimeoutError,
    TransientIOError,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class StagedMutationCoordinator:
    """Executes staged operations with retries, timeouts and compensation."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
        step_timeout: float | None = 30.0,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self.step_timeout = step_timeout
        self._sleep = sleep
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def from_config(cls, config: Any) -> StagedMutationCoordinator:
        """Build from a ``CoordinatorSectionConfig``."""
        return cls(
            max_attempts=config.max_attempts,
            retry_backoff=config.retry_backoff_seconds,
            step_timeout=config.step_timeout_seconds or None,
            max_workers=config.max_workers,
        )

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> StagedMutationCoordinator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Execution ────────────────────────────────────────────────

    def execute(
        self,
        operation: StagedOperation,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Run *operation* to completion and return its result.

        A step that overruns its timeout is waited on until its call has
        settled before anything else is dispatched, so retries, later steps
        and compensations never overlap an earlier call.

        Raises:
            InvariantViolation: If a step reports a structural defect.  The
                compensations of earlier steps have already run and the
                partial result is attached as ``exc.result``.
            CompensationFailure: If such a defect was followed by a failed
                compensation.  The fatal result is attached as ``exc.result``.
        """
        if not operation.begin():
            logger.info("Operation %s cancelled before dispatch", operation.name)
            return OperationResult(
                operation=operation.name,
                outcome=Outcome.CANCELLED,
                detail="cancelled before the first step was dispatched",
            )

        total = len(operation.steps)
        records = [StepRecord(name=step.name, target=step.target) for step in operation.steps]
        result = OperationResult(operation=operation.name, outcome=Outcome.OK, records=records)
        logger.info("Executing %s (%d steps) %s", operation.name, total, operation.subject)

        completed: list[tuple[Step, StepRecord]] = []
        for index, (step, record) in enumerate(zip(operation.steps, records), start=1):

            def on_timeout(
                step: Step = step, record: StepRecord = record, done: int = index - 1
            ) -> None:
                self._emit(result, on_progress, ProgressEvent(
                    step_name=step.name,
                    percent_complete=_percent(done, total),
                    status=StepStatus.TIMED_OUT,
                    attempts=record.attempts,
                ))

            try:
                record.result = self._run_with_retry(step, step.forward, record, on_timeout)
            except Exception as exc:
                record.status = StepStatus.FAILED
                record.error = str(exc)
                logger.warning(
                    "Step %r of %s failed after %d attempt(s): %s",
                    step.name, operation.name, record.attempts, exc,
                )
                self._emit(result, on_progress, ProgressEvent(
                    step_name=step.name,
                    percent_complete=_percent(index - 1, total),
                    status=StepStatus.FAILED,
                    attempts=record.attempts,
                ))
                for pending in records[index:]:
                    pending.status = StepStatus.SKIPPED
                self._finish_failed(result, completed, step, exc)
                if isinstance(exc, InvariantViolation) or not isinstance(exc, MediadeskError):
                    if result.outcome is Outcome.FATAL_INCONSISTENCY:
                        result.error.result = result  # type: ignore[union-attr]
                        raise result.error from exc
                    exc.result = result  # type: ignore[attr-defined]
                    raise
                return result

            record.status = StepStatus.SUCCEEDED
            completed.append((step, record))
            logger.debug("Step %r of %s succeeded", step.name, operation.name)
            self._emit(result, on_progress, ProgressEvent(
                step_name=step.name,
                percent_complete=_percent(index, total),
                status=StepStatus.SUCCEEDED,
                attempts=record.attempts,
            ))

        logger.info("Operation %s completed", operation.name)
        return result

    # ── Internals ────────────────────────────────────────────────

    def _finish_failed(
        self,
        result: OperationResult,
        completed: list[tuple[Step, StepRecord]],
        failed: Step,
        error: Exception,
    ) -> None:
        """Run compensations in reverse order and settle the outcome."""
        compensation_errors: list[str] = []
        for step, record in reversed(completed):
            if step.compensate is None:
                continue
            compensate = step.compensate
            captured = record.result
            try:
                self._run_with_retry(step, lambda: compensate(captured), None)
            except Exception as exc:
                record.status = StepStatus.COMPENSATION_FAILED
                record.compensation_error = str(exc)
                compensation_errors.append(f"{step.name}: {exc}")
                logger.error(
                    "Compensation for %r of %s failed: %s",
                    step.name, result.operation, exc, exc_info=True,
                )
            else:
                record.status = StepStatus.COMPENSATED
                logger.info("Compensated %r of %s", step.name, result.operation)

        if compensation_errors:
            result.outcome = Outcome.FATAL_INCONSISTENCY
            result.detail = (
                f"{failed.name} failed ({error}); compensation failed: "
                + "; ".join(compensation_errors)
                + ". Manual reconciliation required."
            )
            result.error = CompensationFailure(result.detail, records=result.records)
            result.retryable = False
        else:
            result.outcome = Outcome.PARTIAL_FAILURE
            result.detail = f"{failed.name} failed: {error}"
            result.error = error
            result.retryable = isinstance(error, TransientIOError)

    def _run_with_retry(
        self,
        step: Step,
        call: Callable[[], Any],
        record: StepRecord | None,
        on_timeout: Callable[[], None] | None = None,
    ) -> Any:
        """Invoke *call*, retrying transient failures up to ``max_attempts``."""
        attempt = 0
        while True:
            attempt += 1
            if record is not None:
                record.attempts = attempt
            try:
                return self._call(step, call, on_timeout)
            except TransientIOError as exc:
                if not step.retryable or attempt >= self.max_attempts:
                    raise
                delay = self.retry_backoff * attempt
                logger.warning(
                    "Step %r attempt %d/%d failed (%s); retrying in %.1fs",
                    step.name, attempt, self.max_attempts, exc, delay,
                )
                if delay:
                    self._sleep(delay)

    def _call(
        self,
        step: Step,
        call: Callable[[], Any],
        on_timeout: Callable[[], None] | None = None,
    ) -> Any:
        """Invoke *call* under the step's timeout.

        On timeout the call is reported, then waited on until it settles.
        The step still counts as timed out whatever the late call returned.
        """
        timeout = step.timeout if step.timeout is not None else self.step_timeout
        if timeout is None:
            return call()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="mediadesk-step"
            )
        future = self._executor.submit(call)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            if future.done() and future.exception() is not None:
                # The call itself raised a timeout before ours expired.
                raise TransientIOError(f"{step.name} timed out: {future.exception()}") from None

        logger.warning("Step %r exceeded %.1fs; waiting for the call to settle", step.name, timeout)
        if on_timeout is not None:
            on_timeout()
        wait([future])
        late_error = future.exception()
        if late_error is not None:
            logger.debug("Late call for %r failed: %s", step.name, late_error)
        raise StepTimeoutError(f"{step.name} exceeded {timeout:.1f}s")

    @staticmethod
    def _emit(
        result: OperationResult,
        on_progress: ProgressCallback | None,
        event: ProgressEvent,
    ) -> None:
        result.progress.append(event)
        if on_progress is None:
            return
        try:
            on_progress(event)
        except Exception:
            logger.warning("Progress callback failed for %s", event.step_name, exc_info=True)


def _percent(done: int, total: int) -> int:
    if total == 0:
        return 100
    return round(100 * done / total)
