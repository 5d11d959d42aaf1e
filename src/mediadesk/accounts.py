"""Operator account management.

Operator accounts live in two independent stores: the identity provider
holds the login, and the record store holds the ``operator_profiles`` row
that carries the operator's role.  Every change that touches both goes
through the staged mutation coordinator so that neither can outlive the
other.
"""

from __future__ import annotations

import logging
from enum import StrEnum

from pydantic import BaseModel

from mediadesk.content.models import PROFILES_TABLE, OperatorProfile, OperatorRole
from mediadesk.content.rows import profile_from_row
from mediadesk.coordinator import OperationResult, ProgressCallback, StagedMutationCoordinator
from mediadesk.coordinator import operations as ops
from mediadesk.errors import (
    AccountExistsError,
    AccountNotFoundError,
    InvariantViolation,
    PermissionDeniedError,
)
from mediadesk.integrations.base import IdentityProvider, RecordStore
from mediadesk.session import SessionContext

logger = logging.getLogger(__name__)


class AccountPresence(StrEnum):
    """Where an email is known."""

    BOTH = "both"
    IDENTITY_ONLY = "identity"
    PROFILE_ONLY = "profiles"
    NONE = "none"


class UserCheck(BaseModel):
    """Result of ``AccountManager.check_user``."""

    email: str
    presence: AccountPresence
    account_id: str | None = None
    role: OperatorRole | None = None

    @property
    def consistent(self) -> bool:
        return self.presence in (AccountPresence.BOTH, AccountPresence.NONE)


class AccountManager:
    """Invites, deprovisions and resolves operator accounts."""

    def __init__(
        self,
        records: RecordStore,
        identity: IdentityProvider,
        coordinator: StagedMutationCoordinator,
        *,
        invite_redirect: str | None = None,
    ) -> None:
        self.records = records
        self.identity = identity
        self.coordinator = coordinator
        self.invite_redirect = invite_redirect

    def _profile_by_email(self, email: str) -> OperatorProfile | None:
        rows = self.records.list_rows(PROFILES_TABLE, filters={"email": email.lower()})
        if not rows:
            # Profiles written by other tools may keep the original casing.
            rows = [
                row for row in self.records.list_rows(PROFILES_TABLE)
                if str(row.get("email", "")).lower() == email.lower()
            ]
        return profile_from_row(rows[0]) if rows else None

    # ── Queries ──────────────────────────────────────────────────

    def list_profiles(self, session: SessionContext) -> list[OperatorProfile]:
        """All operator profiles, newest first."""
        session.require_admin()
        rows = self.records.list_rows(PROFILES_TABLE, order_by="created_at", descending=True)
        return [profile_from_row(row) for row in rows]

    def check_user(self, session: SessionContext, email: str) -> UserCheck:
        """Report whether *email* exists in the identity store, the profile table, or both."""
        session.require_admin()
        account = self.identity.find_account_by_email(email)
        profile = self._profile_by_email(email)
        if account and profile:
            presence = AccountPresence.BOTH
        elif account:
            presence = AccountPresence.IDENTITY_ONLY
        elif profile:
            presence = AccountPresence.PROFILE_ONLY
        else:
            presence = AccountPresence.NONE
        if presence in (AccountPresence.IDENTITY_ONLY, AccountPresence.PROFILE_ONLY):
            logger.warning("Account %s exists only in %s", email, presence.value)
        return UserCheck(
            email=email,
            presence=presence,
            account_id=(account.id if account else profile.id if profile else None),
            role=profile.role if profile else None,
        )

    def resolve_session(self, token: str) -> SessionContext:
        """Turn a session token into a ``SessionContext``.

        The role comes from the profile row, never from token claims.

        Raises:
            PermissionDeniedError: If the token is invalid or the account has
                no profile.
        """
        account = self.identity.verify_session(token)
        row = self.records.get_row(PROFILES_TABLE, account.id)
        if row is None:
            raise PermissionDeniedError(f"{account.email} has no operator profile")
        profile = profile_from_row(row)
        return SessionContext(account_id=profile.id, email=profile.email, role=profile.role)

    # ── Mutations ────────────────────────────────────────────────

    def invite_account(
        self,
        session: SessionContext,
        email: str,
        role: OperatorRole = OperatorRole.EDITOR,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Invite a new operator and create their profile.

        Raises:
            AccountExistsError: If the email is already known to either store.
        """
        session.require_admin()
        email = email.strip().lower()
        if not email or "@" not in email:
            raise ValueError(f"Invalid email address: {email!r}")
        if self.identity.find_account_by_email(email) or self._profile_by_email(email):
            raise AccountExistsError(f"{email} already has an account")

        operation = ops.build_invite_account(
            email, role, self.records, self.identity, self.invite_redirect
        )
        result = self.coordinator.execute(operation, on_progress)
        if result.ok:
            logger.info("Invited %s as %s", email, role.value)
        return result

    def deprovision_account(
        self,
        session: SessionContext,
        account_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Remove an operator's profile and identity account.

        Raises:
            InvariantViolation: If an admin tries to deprovision themselves.
            AccountNotFoundError: If neither store knows *account_id*.
        """
        session.require_admin()
        if account_id == session.account_id:
            raise InvariantViolation("Operators cannot deprovision their own account")
        if (
            self.records.get_row(PROFILES_TABLE, account_id) is None
            and self.identity.get_account(account_id) is None
        ):
            raise AccountNotFoundError(account_id)

        operation = ops.build_deprovision_account(account_id, self.records, self.identity)
        result = self.coordinator.execute(operation, on_progress)
        if result.ok:
            logger.info("Deprovisioned account %s", account_id)
        else:
            logger.error("Deprovisioning %s ended %s: %s", account_id, result.outcome, result.detail)
        return result
