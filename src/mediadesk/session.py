"""Explicit session context passed into every manager call."""

from __future__ import annotations

from dataclasses import dataclass

from mediadesk.content.models import OperatorRole
from mediadesk.errors import PermissionDeniedError


@dataclass(frozen=True)
class SessionContext:
    """The authenticated operator performing a request."""

    account_id: str
    email: str
    role: OperatorRole

    @property
    def is_admin(self) -> bool:
        return self.role is OperatorRole.ADMIN

    def require_editor(self) -> None:
        """Any operator (editor or admin) may manage content."""
        if self.role not in (OperatorRole.EDITOR, OperatorRole.ADMIN):
            raise PermissionDeniedError(f"{self.email} may not manage content")

    def require_admin(self) -> None:
        if not self.is_admin:
            raise PermissionDeniedError(f"{self.email} is not an admin")
