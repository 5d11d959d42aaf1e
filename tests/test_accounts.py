"""Tests for AccountManager: invite, deprovision, check and session resolution."""

import pytest
from mediadesk.accounts import AccountPresence
from mediadesk.content.models import PROFILES_TABLE, OperatorProfile, OperatorRole, ProfileStatus
from mediadesk.content.rows import profile_to_row
from mediadesk.coordinator import Outcome
from mediadesk.errors import (
    AccountExistsError,
    AccountNotFoundError,
    InvariantViolation,
    PermissionDeniedError,
    RecordStoreError,
)


class TestInvite:
    def test_invites_and_creates_profile(self, accounts, admin, identity, records):
        result = accounts.invite_account(admin, "New@Studio.test", OperatorRole.EDITOR)

        assert result.ok
        account = identity.find_account_by_email("new@studio.test")
        assert account is not None
        profile = records.get_row(PROFILES_TABLE, account.id)
        assert profile["email"] == "new@studio.test"
        assert profile["status"] == ProfileStatus.INVITED.value

    def test_existing_identity_account(self, accounts, admin, identity):
        identity.seed("taken@studio.test")
        with pytest.raises(AccountExistsError):
            accounts.invite_account(admin, "taken@studio.test")

    def test_existing_profile(self, accounts, admin, records):
        profile = OperatorProfile(id="p1", email="taken@studio.test")
        records.create_row(PROFILES_TABLE, profile_to_row(profile))
        with pytest.raises(AccountExistsError):
            accounts.invite_account(admin, "taken@studio.test")

    def test_invalid_email(self, accounts, admin):
        with pytest.raises(ValueError):
            accounts.invite_account(admin, "not-an-email")

    def test_editor_cannot_invite(self, accounts, editor):
        with pytest.raises(PermissionDeniedError):
            accounts.invite_account(editor, "x@studio.test")

    def test_profile_failure_rolls_back_account(self, accounts, admin, identity, records):
        records.injector.fail("create", PROFILES_TABLE, exc=RecordStoreError("constraint"))

        result = accounts.invite_account(admin, "x@studio.test")

        assert result.outcome is Outcome.PARTIAL_FAILURE
        assert identity.accounts == {}
        assert records.list_rows(PROFILES_TABLE) == []


class TestDeprovision:
    def test_removes_profile_and_account(self, accounts, admin, identity, records, operator):
        account = operator("ed@studio.test")

        result = accounts.deprovision_account(admin, account.id)

        assert result.ok
        assert account.id not in identity.accounts
        assert records.get_row(PROFILES_TABLE, account.id) is None

    def test_identity_failure_leaves_exactly_one_profile(
        self, accounts, admin, identity, records, operator
    ):
        account = operator("boss@studio.test", OperatorRole.ADMIN)
        identity.injector.fail("delete", account.id, times=3)

        result = accounts.deprovision_account(admin, account.id)

        assert result.outcome is Outcome.PARTIAL_FAILURE
        assert result.retryable
        rows = records.list_rows(PROFILES_TABLE)
        assert [r["id"] for r in rows] == [account.id]
        assert rows[0]["role"] == "editor"
        assert account.id in identity.accounts

    def test_restore_failure_is_fatal(self, accounts, admin, identity, records, operator):
        account = operator("ed@studio.test")
        identity.injector.fail("delete", account.id, times=3)
        records.injector.fail("create", PROFILES_TABLE, times=3, exc=RecordStoreError("down"))

        result = accounts.deprovision_account(admin, account.id)

        assert result.outcome is Outcome.FATAL_INCONSISTENCY
        assert "Manual reconciliation" in result.detail

    def test_cannot_deprovision_self(self, accounts, admin):
        with pytest.raises(InvariantViolation):
            accounts.deprovision_account(admin, admin.account_id)

    def test_unknown_account(self, accounts, admin):
        with pytest.raises(AccountNotFoundError):
            accounts.deprovision_account(admin, "ghost")

    def test_editor_cannot_deprovision(self, accounts, editor, operator):
        account = operator("other@studio.test")
        with pytest.raises(PermissionDeniedError):
            accounts.deprovision_account(editor, account.id)


class TestCheckUser:
    def test_both(self, accounts, admin, operator):
        account = operator("ed@studio.test", OperatorRole.ADMIN)
        check = accounts.check_user(admin, "ED@studio.test")
        assert check.presence is AccountPresence.BOTH
        assert check.account_id == account.id
        assert check.role is OperatorRole.ADMIN
        assert check.consistent

    def test_identity_only(self, accounts, admin, identity):
        identity.seed("lone@studio.test")
        check = accounts.check_user(admin, "lone@studio.test")
        assert check.presence is AccountPresence.IDENTITY_ONLY
        assert not check.consistent

    def test_profile_only(self, accounts, admin, records):
        records.create_row(PROFILES_TABLE, profile_to_row(OperatorProfile(id="p", email="p@studio.test")))
        assert accounts.check_user(admin, "p@studio.test").presence is AccountPresence.PROFILE_ONLY

    def test_none(self, accounts, admin):
        check = accounts.check_user(admin, "nobody@studio.test")
        assert check.presence is AccountPresence.NONE
        assert check.account_id is None


class TestProfiles:
    def test_list_profiles(self, accounts, admin, operator):
        operator("a@studio.test")
        operator("b@studio.test")
        emails = {p.email for p in accounts.list_profiles(admin)}
        assert emails == {"a@studio.test", "b@studio.test"}


class TestResolveSession:
    def test_role_comes_from_profile(self, accounts, identity, operator, records):
        account = operator("ed@studio.test", OperatorRole.EDITOR)
        identity.tokens["tok"] = account.id
        records.update_row(PROFILES_TABLE, account.id, {"role": "admin"})

        session = accounts.resolve_session("tok")

        assert session.account_id == account.id
        assert session.role is OperatorRole.ADMIN

    def test_invalid_token(self, accounts):
        with pytest.raises(PermissionDeniedError):
            accounts.resolve_session("bogus")

    def test_account_without_profile(self, accounts, identity):
        account = identity.seed("lone@studio.test")
        identity.tokens["tok"] = account.id
        with pytest.raises(PermissionDeniedError):
            accounts.resolve_session("tok")
