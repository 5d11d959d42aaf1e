"""Concrete step sequences for each high-level request.

Ordering rules:

- Storage deletes are not undoable, so every sequence that removes assets
  deletes them *before* touching the row that references them.  A crash in
  between leaves "row referencing missing assets", which re-running the
  operation repairs.  The reverse would leave orphaned assets with nothing
  left to retry against.
- Replacing an asset deletes the old key before uploading the new one, so one
  field never has two live keys.
- Uploads are compensated by deleting the new key.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import partial
from typing import Any

from mediadesk.content.models import (
    PROFILES_TABLE,
    AssetRef,
    Entity,
    EntityStatus,
    OperatorProfile,
    OperatorRole,
    ProfileStatus,
)
from mediadesk.content.rows import entity_to_row, profile_from_row, profile_to_row
from mediadesk.coordinator.steps import StagedOperation, Step
from mediadesk.errors import InvariantViolation
from mediadesk.integrations.base import AssetStore, IdentityProvider, RecordStore

logger = logging.getLogger(__name__)

ASSETS = "assets"
RECORDS = "records"
IDENTITY = "identity"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


# ── Entity operations ────────────────────────────────────────────


def build_save_entity(
    entity: Entity,
    records: RecordStore,
    *,
    changes: dict[str, Any] | None = None,
) -> StagedOperation:
    """Create the row on first save, or apply field *changes* to it."""
    if changes is None:
        step = Step(
            name="create row",
            target=RECORDS,
            forward=partial(records.create_row, entity.kind.table, entity_to_row(entity)),
        )
    else:
        step = Step(
            name="update row",
            target=RECORDS,
            forward=partial(records.update_row, entity.kind.table, entity.id, changes),
        )
    return StagedOperation("save_entity", [step], subject=entity.id)


def build_publish(entity: Entity, records: RecordStore) -> StagedOperation:
    """Single step: flip the row's status to published."""
    changes = {"status": EntityStatus.PUBLISHED.value, "published_at": _now_iso()}
    step = Step(
        name="publish",
        target=RECORDS,
        forward=partial(records.update_row, entity.kind.table, entity.id, changes),
    )
    return StagedOperation("publish", [step], subject=entity.id)


def build_unpublish(entity: Entity, records: RecordStore) -> StagedOperation:
    step = Step(
        name="unpublish",
        target=RECORDS,
        forward=partial(
            records.update_row, entity.kind.table, entity.id, {"status": EntityStatus.DRAFT.value}
        ),
    )
    return StagedOperation("unpublish", [step], subject=entity.id)


def build_delete_entity(entity: Entity, assets: AssetStore, records: RecordStore) -> StagedOperation:
    """Delete every owned asset (primary, then gallery in order), then the row."""
    operation = StagedOperation("delete_entity", subject=entity.id)
    for asset in entity.assets:
        operation.add(Step(
            name=f"delete {asset.key}",
            target=ASSETS,
            forward=partial(assets.delete, asset.key),
        ))
    operation.add(Step(
        name="delete row",
        target=RECORDS,
        forward=partial(records.delete_row, entity.kind.table, entity.id),
    ))
    return operation


def build_abandon_draft(draft: Entity, assets: AssetStore) -> StagedOperation:
    """Delete the assets of a never-saved draft.

    Each step detaches its asset from the in-memory draft only after the
    storage delete succeeded, so a failure leaves the remaining assets
    attached and the cleanup can be retried.
    """
    operation = StagedOperation("abandon_draft", subject=draft.id)

    def delete_primary(asset: AssetRef) -> bool:
        removed = assets.delete(asset.key)
        if draft.primary_asset is not None and draft.primary_asset.key == asset.key:
            draft.primary_asset = None
        return removed

    def delete_gallery_item(asset: AssetRef) -> bool:
        removed = assets.delete(asset.key)
        draft.gallery = [a for a in draft.gallery if a.key != asset.key]
        draft.gallery_alts.pop(asset.key, None)
        return removed

    if draft.primary_asset is not None:
        operation.add(Step(
            name=f"delete {draft.primary_asset.key}",
            target=ASSETS,
            forward=partial(delete_primary, draft.primary_asset),
        ))
    for asset in list(draft.gallery):
        operation.add(Step(
            name=f"delete {asset.key}",
            target=ASSETS,
            forward=partial(delete_gallery_item, asset),
        ))
    return operation


def build_attach_draft_asset(
    draft: Entity,
    slot: str,
    new_key: str,
    data: bytes,
    content_type: str | None,
    alt_text: str,
    assets: AssetStore,
) -> StagedOperation:
    """Upload an asset for a never-saved draft and attach it in memory.

    A replaced primary asset is deleted before the new one is uploaded.
    """
    operation = StagedOperation("attach_draft_asset", subject=draft.id)
    old = draft.primary_asset if slot == "primary" else None
    if old is not None:

        def delete_old() -> bool:
            removed = assets.delete(old.key)
            draft.primary_asset = None
            return removed

        operation.add(Step(name=f"delete {old.key}", target=ASSETS, forward=delete_old))

    def upload() -> AssetRef:
        ref = assets.put(new_key, data, content_type)
        if slot == "primary":
            draft.primary_asset = ref
        else:
            draft.gallery = [a for a in draft.gallery if a.key != ref.key] + [ref]
            draft.gallery_alts[ref.key] = alt_text
        return ref

    operation.add(Step(name=f"upload {new_key}", target=ASSETS, forward=upload))
    return operation


def build_detach_draft_asset(draft: Entity, key: str, assets: AssetStore) -> StagedOperation:
    """Delete one gallery asset of a never-saved draft and drop it in memory.

    Raises:
        InvariantViolation: If *key* is not in the draft's gallery.
    """
    if not any(a.key == key for a in draft.gallery):
        raise InvariantViolation(f"Asset {key} is not owned by draft {draft.id}")

    def delete() -> bool:
        removed = assets.delete(key)
        draft.gallery = [a for a in draft.gallery if a.key != key]
        draft.gallery_alts.pop(key, None)
        return removed

    return StagedOperation(
        "detach_draft_asset",
        [Step(name=f"delete {key}", target=ASSETS, forward=delete)],
        subject=draft.id,
    )


def build_replace_primary_asset(
    entity: Entity,
    new_key: str,
    data: bytes,
    content_type: str | None,
    assets: AssetStore,
    records: RecordStore,
) -> StagedOperation:
    """Delete the old primary asset, upload the new one, then point the row at it."""
    operation = StagedOperation("replace_primary_asset", subject=entity.id)
    state: dict[str, AssetRef] = {}

    old = entity.primary_asset
    if old is not None:
        operation.add(Step(
            name=f"delete {old.key}",
            target=ASSETS,
            forward=partial(assets.delete, old.key),
        ))

    def upload() -> AssetRef:
        ref = assets.put(new_key, data, content_type)
        state["new"] = ref
        return ref

    operation.add(Step(
        name=f"upload {new_key}",
        target=ASSETS,
        forward=upload,
        compensate=lambda ref: assets.delete(ref.key),
    ))
    operation.add(Step(
        name="update row",
        target=RECORDS,
        forward=lambda: records.update_row(
            entity.kind.table, entity.id, {"primary_image": state["new"].url}
        ),
    ))
    return operation


def build_attach_gallery_asset(
    entity: Entity,
    new_key: str,
    data: bytes,
    content_type: str | None,
    alt_text: str,
    assets: AssetStore,
    records: RecordStore,
) -> StagedOperation:
    """Upload a gallery image and append it to the row's gallery column."""
    operation = StagedOperation("attach_gallery_asset", subject=entity.id)
    state: dict[str, AssetRef] = {}

    def upload() -> AssetRef:
        ref = assets.put(new_key, data, content_type)
        state["new"] = ref
        return ref

    def append_to_row() -> dict[str, Any]:
        ref = state["new"]
        urls = [a.url for a in entity.gallery if a.key != ref.key] + [ref.url]
        alts = {**entity.gallery_alts, ref.key: alt_text}
        return records.update_row(
            entity.kind.table, entity.id, {"gallery_images": urls, "gallery_alts": alts}
        )

    operation.add(Step(
        name=f"upload {new_key}",
        target=ASSETS,
        forward=upload,
        compensate=lambda ref: assets.delete(ref.key),
    ))
    operation.add(Step(name="update row", target=RECORDS, forward=append_to_row))
    return operation


def build_detach_gallery_asset(
    entity: Entity,
    key: str,
    assets: AssetStore,
    records: RecordStore,
) -> StagedOperation:
    """Delete one gallery asset, then drop it from the row.

    Raises:
        InvariantViolation: If *key* is not in the entity's gallery.
    """
    if not any(a.key == key for a in entity.gallery):
        raise InvariantViolation(f"Asset {key} is not owned by the gallery of {entity.id}")
    urls = [a.url for a in entity.gallery if a.key != key]
    alts = {k: v for k, v in entity.gallery_alts.items() if k != key}
    return StagedOperation("detach_gallery_asset", [
        Step(name=f"delete {key}", target=ASSETS, forward=partial(assets.delete, key)),
        Step(
            name="update row",
            target=RECORDS,
            forward=partial(
                records.update_row,
                entity.kind.table,
                entity.id,
                {"gallery_images": urls, "gallery_alts": alts},
            ),
        ),
    ], subject=entity.id)


# ── Account operations ───────────────────────────────────────────


def build_deprovision_account(
    account_id: str,
    records: RecordStore,
    identity: IdentityProvider,
) -> StagedOperation:
    """Remove the profile row, then the identity account.

    If the identity delete fails, the profile is re-inserted from the
    re-fetched account with the least-privileged role, so the account is
    never left able to authenticate without a profile.
    """
    captured: dict[str, dict[str, Any]] = {}

    def delete_profile() -> dict[str, Any] | None:
        row = records.get_row(PROFILES_TABLE, account_id)
        if row is not None and "row" not in captured:
            captured["row"] = row
        records.delete_row(PROFILES_TABLE, account_id)
        return captured.get("row")

    def restore_profile(row: dict[str, Any] | None) -> None:
        account = identity.get_account(account_id)
        if account is None:
            logger.info("Account %s no longer exists; no profile to restore", account_id)
            return
        previous = profile_from_row(row) if row else None
        profile = OperatorProfile(
            id=account.id,
            email=account.email,
            role=OperatorRole.EDITOR,
            status=previous.status if previous else ProfileStatus.ACTIVE,
            created_at=previous.created_at if previous else datetime.now(tz=UTC),
        )
        records.create_row(PROFILES_TABLE, profile_to_row(profile))
        logger.info("Restored profile for %s with role %s", account_id, profile.role.value)

    return StagedOperation("deprovision_account", [
        Step(
            name="delete profile",
            target=RECORDS,
            forward=delete_profile,
            compensate=restore_profile,
        ),
        Step(
            name="delete identity account",
            target=IDENTITY,
            forward=partial(identity.delete_account, account_id),
        ),
    ], subject=account_id)


def build_invite_account(
    email: str,
    role: OperatorRole,
    records: RecordStore,
    identity: IdentityProvider,
    redirect_to: str | None = None,
) -> StagedOperation:
    """Invite an identity account, then create its profile row.

    A failed profile insert deletes the freshly invited account.
    """
    state: dict[str, Any] = {}

    def invite() -> Any:
        account = identity.find_account_by_email(email)
        if account is None:
            account = identity.invite_account(email, role, redirect_to)
        state["account"] = account
        return account

    def create_profile() -> dict[str, Any]:
        account = state["account"]
        profile = OperatorProfile(
            id=account.id,
            email=email,
            role=role,
            status=ProfileStatus.INVITED,
        )
        return records.create_row(PROFILES_TABLE, profile_to_row(profile))

    return StagedOperation("invite_account", [
        Step(
            name="invite identity account",
            target=IDENTITY,
            forward=invite,
            compensate=lambda account: identity.delete_account(account.id),
        ),
        Step(name="create profile", target=RECORDS, forward=create_profile),
    ], subject=email)
