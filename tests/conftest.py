"""Shared fixtures: in-memory leaf clients with failure injection."""

from collections import defaultdict
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

import pytest
from mediadesk.accounts import AccountManager
from mediadesk.content.models import (
    PROFILES_TABLE,
    AssetRef,
    IdentityAccount,
    OperatorProfile,
    OperatorRole,
)
from mediadesk.content.rows import profile_to_row
from mediadesk.content.store import JsonRecordStore
from mediadesk.coordinator import StagedMutationCoordinator
from mediadesk.errors import PermissionDeniedError, TransientIOError
from mediadesk.integrations.base import AssetStore, IdentityProvider
from mediadesk.lifecycle import EntityLifecycleManager
from mediadesk.session import SessionContext

CDN = "https://cdn.example.test"


class FailureInjector:
    """Queue exceptions to be raised by the next calls of an operation."""

    def __init__(self) -> None:
        self._failures: dict[tuple[str, str | None], list[Exception]] = defaultdict(list)
        self.calls: list[tuple[str, str]] = []

    def fail(
        self,
        operation: str,
        target: str | None = None,
        times: int = 1,
        exc: Exception | None = None,
    ) -> None:
        """Make *operation* (optionally only for *target*) fail *times* times."""
        for _ in range(times):
            self._failures[(operation, target)].append(
                exc or TransientIOError(f"injected {operation} failure")
            )

    def check(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        for key in ((operation, target), (operation, None)):
            queued = self._failures.get(key)
            if queued:
                raise queued.pop(0)


class FakeAssetStore(AssetStore):
    """Object storage held in a dict."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.injector = FailureInjector()

    def public_url(self, key: str) -> str:
        return f"{CDN}/{key}"

    def put(self, key: str, data: bytes, content_type: str | None = None) -> AssetRef:
        self.injector.check("put", key)
        self.objects[key] = data
        return AssetRef(key=key, url=self.public_url(key))

    def get(self, key: str) -> bytes:
        self.injector.check("get", key)
        if key not in self.objects:
            raise FileNotFoundError(key)
        return self.objects[key]

    def delete(self, key: str) -> bool:
        self.injector.check("delete", key)
        return self.objects.pop(key, None) is not None

    def seed(self, key: str, data: bytes = b"img") -> AssetRef:
        self.objects[key] = data
        return AssetRef(key=key, url=self.public_url(key))


class FakeIdentityProvider(IdentityProvider):
    """Identity accounts held in a dict; tokens map straight to account ids."""

    def __init__(self) -> None:
        self.accounts: dict[str, IdentityAccount] = {}
        self.tokens: dict[str, str] = {}
        self.injector = FailureInjector()

    def invite_account(self, email, role, redirect_to=None) -> IdentityAccount:
        self.injector.check("invite", email)
        account = IdentityAccount(id=str(uuid4()), email=email, role=role)
        self.accounts[account.id] = account
        return account

    def get_account(self, account_id: str) -> IdentityAccount | None:
        self.injector.check("get", account_id)
        return self.accounts.get(account_id)

    def find_account_by_email(self, email: str) -> IdentityAccount | None:
        self.injector.check("find", email)
        for account in self.accounts.values():
            if account.email.lower() == email.lower():
                return account
        return None

    def delete_account(self, account_id: str) -> bool:
        self.injector.check("delete", account_id)
        return self.accounts.pop(account_id, None) is not None

    def verify_session(self, token: str) -> IdentityAccount:
        account_id = self.tokens.get(token)
        if account_id is None or account_id not in self.accounts:
            raise PermissionDeniedError("Invalid session token")
        return self.accounts[account_id]

    def seed(self, email: str, role: OperatorRole = OperatorRole.EDITOR) -> IdentityAccount:
        account = IdentityAccount(
            id=str(uuid4()), email=email, role=role, confirmed_at=datetime.now(tz=UTC)
        )
        self.accounts[account.id] = account
        return account


class FlakyRecordStore(JsonRecordStore):
    """JsonRecordStore whose writes can be made to fail."""

    def __init__(self, directory: Path) -> None:
        super().__init__(directory)
        self.injector = FailureInjector()

    def create_row(self, table, row):
        self.injector.check("create", table)
        return super().create_row(table, row)

    def update_row(self, table, row_id, changes):
        self.injector.check("update", table)
        return super().update_row(table, row_id, changes)

    def delete_row(self, table, row_id):
        self.injector.check("delete", table)
        return super().delete_row(table, row_id)


@pytest.fixture
def assets() -> FakeAssetStore:
    return FakeAssetStore()


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def records(tmp_path: Path) -> FlakyRecordStore:
    return FlakyRecordStore(tmp_path)


@pytest.fixture
def coordinator():
    """Coordinator with no timeouts or backoff sleeps."""
    coord = StagedMutationCoordinator(
        max_attempts=3, retry_backoff=0, step_timeout=None, sleep=lambda _: None
    )
    yield coord
    coord.close()


@pytest.fixture
def lifecycle(records, assets, coordinator) -> EntityLifecycleManager:
    return EntityLifecycleManager(records, assets, coordinator)


@pytest.fixture
def accounts(records, identity, coordinator) -> AccountManager:
    return AccountManager(records, identity, coordinator, invite_redirect=f"{CDN}/auth/invite")


@pytest.fixture
def editor() -> SessionContext:
    return SessionContext(account_id="editor-1", email="editor@studio.test", role=OperatorRole.EDITOR)


@pytest.fixture
def admin() -> SessionContext:
    return SessionContext(account_id="admin-1", email="admin@studio.test", role=OperatorRole.ADMIN)


@pytest.fixture
def operator(records, identity):
    """Seed an identity account together with its profile row."""

    def _make(email: str, role: OperatorRole = OperatorRole.EDITOR) -> IdentityAccount:
        account = identity.seed(email, role)
        profile = OperatorProfile(id=account.id, email=email, role=role)
        records.create_row(PROFILES_TABLE, profile_to_row(profile))
        return account

    return _make
