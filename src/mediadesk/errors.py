"""Error taxonomy shared by the coordinator, the managers and the adapters.

Four kinds drive behaviour:

- ``ValidationError``: a required field is missing. Reported as a field list,
  never retried, never dispatched to the coordinator.
- ``TransientIOError``: a leaf-client call failed for network or service
  reasons. The coordinator retries the same idempotent step a bounded number
  of times, then escalates.
- ``CompensationFailure``: a rollback action itself failed. Always surfaced
  to the caller as a fatal, manually reconcilable state.
- ``InvariantViolation``: a programming-level defect. Fails fast.
"""

from __future__ import annotations

from typing import Any


class MediadeskError(Exception):
    """Base error for everything raised by mediadesk."""


class ValidationError(MediadeskError):
    """One or more required fields are missing or blank."""

    def __init__(self, missing: list[str], message: str | None = None) -> None:
        self.missing = list(missing)
        super().__init__(message or f"Missing required fields: {', '.join(self.missing)}")


class TransientIOError(MediadeskError):
    """A leaf-client call failed in a way that may succeed on retry."""


class StepTimeoutError(TransientIOError):
    """A leaf-client call exceeded its step timeout.

    The side effect may or may not have landed.
    """


class CompensationFailure(MediadeskError):
    """A compensating action failed after a forward step failed."""

    def __init__(self, message: str, *, records: list[Any] | None = None) -> None:
        self.records = list(records or [])
        super().__init__(message)


class InvariantViolation(MediadeskError):
    """A structural invariant was about to be broken."""


class InvalidTransitionError(InvariantViolation):
    """The requested lifecycle transition is not allowed from the current state."""


class EntityNotFoundError(MediadeskError, KeyError):
    """No entity row exists for the given id."""


class AccountNotFoundError(MediadeskError, KeyError):
    """Neither a profile row nor an identity account exists for the given id."""


class AccountExistsError(MediadeskError):
    """An account or profile with this email already exists."""


class EntityBusyError(MediadeskError):
    """Another operation on the same entity is still in flight."""


class PermissionDeniedError(MediadeskError):
    """The session is not allowed to perform the requested action."""


class OperationCancelledError(MediadeskError):
    """The operation was cancelled before its first step was dispatched."""


class OperationFailedError(MediadeskError):
    """A staged operation ended in partial failure with compensation applied."""

    def __init__(self, message: str, *, records: list[Any] | None = None) -> None:
        self.records = list(records or [])
        super().__init__(message)


class StorageConfigError(MediadeskError):
    """The object store rejected the request for configuration reasons."""


class RecordStoreError(MediadeskError):
    """The record store rejected the request permanently."""


class IdentityProviderError(MediadeskError):
    """The identity provider rejected the request permanently."""
