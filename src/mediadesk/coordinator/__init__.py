"""Staged mutation coordinator: ordered steps with retries and compensation."""

from mediadesk.coordinator.coordinator import ProgressCallback, StagedMutationCoordinator
from mediadesk.coordinator.steps import (
    OperationResult,
    Outcome,
    ProgressEvent,
    StagedOperation,
    Step,
    StepRecord,
    StepStatus,
)

__all__ = [
    "OperationResult",
    "Outcome",
    "ProgressCallback",
    "ProgressEvent",
    "StagedMutationCoordinator",
    "StagedOperation",
    "Step",
    "StepRecord",
    "StepStatus",
]
