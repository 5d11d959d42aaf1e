"""Capability interfaces for the three independent external stores.

Every primitive is idempotent.  Deletes report ``False`` when the target was
already gone, and callers treat that as success.  Implementations raise
``TransientIOError`` for failures that may succeed on retry and a permanent
adapter error otherwise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from mediadesk.content.models import AssetRef, IdentityAccount, OperatorRole


class AssetStore(ABC):
    """Object storage addressed by key."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str | None = None) -> AssetRef:
        """Store *data* under *key*, overwriting any existing object."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the object's bytes.

        Raises:
            FileNotFoundError: If no object exists under *key*.
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete the object; return False if it did not exist."""

    @abstractmethod
    def public_url(self, key: str) -> str:
        """Public access URL for *key*."""

    def exists(self, key: str) -> bool:
        try:
            self.get(key)
        except FileNotFoundError:
            return False
        return True


class RecordStore(ABC):
    """Row-level access to the relational store."""

    @abstractmethod
    def create_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert *row*, replacing any row with the same ``id``."""

    @abstractmethod
    def get_row(self, table: str, row_id: str) -> dict[str, Any] | None:
        """Return the row or None."""

    @abstractmethod
    def update_row(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply *changes* to an existing row and return the updated row.

        Raises:
            EntityNotFoundError: If no row exists.
        """

    @abstractmethod
    def delete_row(self, table: str, row_id: str) -> bool:
        """Delete the row; return False if it did not exist."""

    @abstractmethod
    def list_rows(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Ordered range read."""


class IdentityProvider(ABC):
    """Operator accounts in the identity store."""

    @abstractmethod
    def invite_account(
        self,
        email: str,
        role: OperatorRole,
        redirect_to: str | None = None,
    ) -> IdentityAccount:
        """Create (invite) an account carrying a role claim."""

    @abstractmethod
    def get_account(self, account_id: str) -> IdentityAccount | None:
        """Fetch by id, or None if the account does not exist."""

    @abstractmethod
    def find_account_by_email(self, email: str) -> IdentityAccount | None:
        """Case-insensitive lookup by email."""

    @abstractmethod
    def delete_account(self, account_id: str) -> bool:
        """Delete the account; return False if it did not exist."""

    @abstractmethod
    def verify_session(self, token: str) -> IdentityAccount:
        """Validate a session token and return the account it belongs to.

        Raises:
            PermissionDeniedError: If the token is invalid or expired.
        """
