"""Builds the leaf clients and managers for a loaded configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from mediadesk.accounts import AccountManager
from mediadesk.config import MediadeskConfig
from mediadesk.content.models import OperatorRole
from mediadesk.content.store import JsonRecordStore
from mediadesk.coordinator import StagedMutationCoordinator
from mediadesk.errors import PermissionDeniedError, RecordStoreError
from mediadesk.integrations.base import AssetStore, IdentityProvider, RecordStore
from mediadesk.integrations.local import LocalAssetStore
from mediadesk.integrations.spaces import SpacesAssetStore
from mediadesk.integrations.supabase import PostgrestRecordStore, SupabaseIdentityProvider
from mediadesk.lifecycle import EntityLifecycleManager
from mediadesk.session import SessionContext

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a caller needs, sharing one coordinator."""

    records: RecordStore
    assets: AssetStore
    identity: IdentityProvider | None
    coordinator: StagedMutationCoordinator
    lifecycle: EntityLifecycleManager
    accounts: AccountManager | None
    local_operator: str = ""

    def session_for(self, token: str | None) -> SessionContext:
        """Resolve the session for a token, or the configured local operator.

        Raises:
            PermissionDeniedError: If neither a usable token nor a local
                operator is available.
        """
        if token:
            if self.accounts is None:
                raise PermissionDeniedError("No identity provider is configured to verify tokens")
            return self.accounts.resolve_session(token)
        if self.local_operator and self.identity is None:
            logger.debug("Using local operator %s", self.local_operator)
            return SessionContext(
                account_id="local", email=self.local_operator, role=OperatorRole.ADMIN
            )
        raise PermissionDeniedError("A session token is required")

    def close(self) -> None:
        self.coordinator.close()


def build_records(config: MediadeskConfig) -> RecordStore:
    if config.records.backend == "postgrest":
        supabase = config.to_supabase_config()
        if not supabase.is_configured:
            raise RecordStoreError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        return PostgrestRecordStore(supabase)
    directory = Path(config.records.directory)
    directory.mkdir(parents=True, exist_ok=True)
    return JsonRecordStore(directory)


def build_assets(config: MediadeskConfig) -> AssetStore:
    if config.storage.backend == "spaces":
        return SpacesAssetStore(config.to_spaces_config())
    return LocalAssetStore(config.storage.local_path, config.storage.public_base_url)


def build_identity(config: MediadeskConfig) -> IdentityProvider | None:
    supabase = config.to_supabase_config()
    if not supabase.is_configured:
        logger.info("Identity provider not configured; account commands are unavailable")
        return None
    return SupabaseIdentityProvider(supabase)


def build_services(config: MediadeskConfig) -> Services:
    """Wire the configured backends to one coordinator and both managers."""
    records = build_records(config)
    assets = build_assets(config)
    identity = build_identity(config)
    coordinator = StagedMutationCoordinator.from_config(config.coordinator)
    accounts = None
    if identity is not None:
        accounts = AccountManager(
            records,
            identity,
            coordinator,
            invite_redirect=config.to_supabase_config().invite_redirect,
        )
    return Services(
        records=records,
        assets=assets,
        identity=identity,
        coordinator=coordinator,
        lifecycle=EntityLifecycleManager(records, assets, coordinator),
        accounts=accounts,
        local_operator=config.identity.local_operator,
    )
