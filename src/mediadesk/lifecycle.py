"""Entity lifecycle manager.

Owns the state machine for every content entity::

    new_unsaved ──save──▶ draft ◀──unpublish── published
         │                  │ ──publish──▶        │
      abandon               └──────delete─────────┴──▶ deleted

Every transition that touches the record store or object storage goes
through the staged mutation coordinator.  Operations are serialized per
entity id: a second request for an entity that is already in flight is
rejected with ``EntityBusyError``.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Literal

from mediadesk.content.completeness import check_draft, evaluate, normalize_video_url
from mediadesk.content.models import Entity, EntityKind, EntityStatus, LifecycleState
from mediadesk.content.rows import entity_from_row, entity_to_row
from mediadesk.coordinator import (
    OperationResult,
    Outcome,
    ProgressCallback,
    StagedMutationCoordinator,
)
from mediadesk.coordinator import operations as ops
from mediadesk.errors import (
    EntityBusyError,
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationError,
)
from mediadesk.integrations.base import AssetStore, RecordStore
from mediadesk.session import SessionContext

logger = logging.getLogger(__name__)

AssetSlot = Literal["primary", "gallery"]

# Columns a plain field edit may change.  Status, assets and timestamps only
# move through their dedicated transitions.
_EDITABLE_COLUMNS = (
    "title", "slug", "couple_names", "event_date", "location", "content",
    "description", "review", "video_url", "meta_description",
    "is_featured_home", "is_featured_blog",
)


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "untitled"


def make_asset_key(kind: EntityKind, filename: str, now: datetime | None = None) -> str:
    """Build ``<folder>/<epoch-ms>-<sanitized filename>``."""
    stamp = int((now or datetime.now(tz=UTC)).timestamp() * 1000)
    clean = re.sub(r"[^a-zA-Z0-9.-]", "", filename) or "upload"
    return f"{kind.asset_folder}/{stamp}-{clean}"


class EntityLifecycleManager:
    """Drives entity transitions through the coordinator."""

    def __init__(
        self,
        records: RecordStore,
        assets: AssetStore,
        coordinator: StagedMutationCoordinator,
    ) -> None:
        self.records = records
        self.assets = assets
        self.coordinator = coordinator
        self._unsaved: dict[str, Entity] = {}
        self._deleted: set[str] = set()
        self._busy: set[str] = set()
        self._lock = threading.Lock()

    # ── Private helpers ──────────────────────────────────────────

    @contextmanager
    def _exclusive(self, entity_id: str) -> Iterator[None]:
        with self._lock:
            if entity_id in self._busy:
                raise EntityBusyError(f"Another operation on {entity_id} is in progress")
            self._busy.add(entity_id)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(entity_id)

    def _find(self, entity_id: str, kind: EntityKind | None = None) -> Entity | None:
        kinds = [kind] if kind is not None else list(EntityKind)
        for candidate in kinds:
            row = self.records.get_row(candidate.table, entity_id)
            if row is not None:
                return entity_from_row(row)
        return None

    def _require_saved(self, entity_id: str, kind: EntityKind | None = None) -> Entity:
        if entity_id in self._unsaved:
            raise InvalidTransitionError(f"{entity_id} has never been saved")
        entity = self._find(entity_id, kind)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    @staticmethod
    def _noop(operation: str, detail: str) -> OperationResult:
        return OperationResult(operation=operation, outcome=Outcome.OK, detail=detail)

    @staticmethod
    def _clean(entity: Entity) -> Entity:
        """Apply save-time normalization."""
        updates: dict[str, Any] = {}
        normalized = normalize_video_url(entity.video_url)
        if entity.video_url and normalized is None:
            logger.warning(
                "Dropping unrecognised video URL %r on %s", entity.video_url, entity.id
            )
        if normalized != entity.video_url:
            updates["video_url"] = normalized
        if entity.kind is EntityKind.ARTICLE and not entity.slug.strip() and entity.title.strip():
            updates["slug"] = slugify(entity.title)
        return entity.model_copy(update=updates) if updates else entity

    # ── Reads ────────────────────────────────────────────────────

    def state_of(self, entity_id: str) -> LifecycleState:
        if entity_id in self._unsaved:
            return LifecycleState.NEW_UNSAVED
        entity = self._find(entity_id)
        if entity is not None:
            return LifecycleState(entity.status.value)
        if entity_id in self._deleted:
            return LifecycleState.DELETED
        raise EntityNotFoundError(entity_id)

    def get_entity(self, session: SessionContext, entity_id: str) -> Entity:
        session.require_editor()
        if entity_id in self._unsaved:
            return self._unsaved[entity_id]
        entity = self._find(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    def list_entities(
        self,
        session: SessionContext,
        kind: EntityKind,
        *,
        status: EntityStatus | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Entity]:
        """Saved entities of *kind*, newest first."""
        session.require_editor()
        filters = {"status": status.value} if status is not None else None
        rows = self.records.list_rows(
            kind.table, filters=filters, order_by="created_at", descending=True,
            offset=offset, limit=limit,
        )
        return [entity_from_row(row) for row in rows]

    # ── Drafts and edits ─────────────────────────────────────────

    def new_draft(self, session: SessionContext, kind: EntityKind, **fields: Any) -> Entity:
        """Start a never-saved draft held in memory until its first save."""
        session.require_editor()
        draft = Entity(kind=kind, status=EntityStatus.DRAFT, **fields)
        self._unsaved[draft.id] = draft
        logger.debug("Opened new %s draft %s", kind.value, draft.id)
        return draft

    def save(self, session: SessionContext, entity: Entity) -> Entity:
        """Persist field edits.

        The first save of a new draft creates its row.  Later saves only
        change editable columns: status and assets are left alone.

        Raises:
            ValidationError: If the identifying field is blank.
        """
        session.require_editor()
        missing = check_draft(entity)
        if missing:
            raise ValidationError(missing)
        entity = self._clean(entity)

        with self._exclusive(entity.id):
            registered = self._unsaved.get(entity.id)
            if registered is not None:
                # Uploads attach to the registered draft, not to caller copies.
                entity = entity.model_copy(update={
                    "status": EntityStatus.DRAFT,
                    "primary_asset": registered.primary_asset,
                    "gallery": list(registered.gallery),
                    "gallery_alts": dict(registered.gallery_alts),
                })
                operation = ops.build_save_entity(entity, self.records)
            else:
                if self._find(entity.id, entity.kind) is None:
                    raise EntityNotFoundError(entity.id)
                row = entity_to_row(entity)
                changes = {column: row[column] for column in _EDITABLE_COLUMNS}
                operation = ops.build_save_entity(entity, self.records, changes=changes)
            self.coordinator.execute(operation).raise_for_outcome()
            if self._unsaved.pop(entity.id, None) is not None:
                logger.info("Saved new %s %s as draft", entity.kind.value, entity.id)

        return self._require_saved(entity.id, entity.kind)

    def upload_asset(
        self,
        session: SessionContext,
        entity_id: str,
        slot: AssetSlot,
        data: bytes,
        filename: str,
        content_type: str | None = None,
        *,
        alt_text: str = "",
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Upload an image into the primary slot or append it to the gallery.

        Replacing the primary asset deletes the old key first.
        """
        session.require_editor()
        if slot not in ("primary", "gallery"):
            raise ValueError(f"Unknown asset slot: {slot!r}")

        with self._exclusive(entity_id):
            draft = self._unsaved.get(entity_id)
            if draft is not None:
                key = make_asset_key(draft.kind, filename)
                operation = ops.build_attach_draft_asset(
                    draft, slot, key, data, content_type, alt_text, self.assets
                )
                return self.coordinator.execute(operation, on_progress)

            entity = self._require_saved(entity_id)
            missing = check_draft(entity)
            if missing:
                raise ValidationError(missing)
            key = make_asset_key(entity.kind, filename)
            if slot == "primary":
                operation = ops.build_replace_primary_asset(
                    entity, key, data, content_type, self.assets, self.records
                )
            else:
                operation = ops.build_attach_gallery_asset(
                    entity, key, data, content_type, alt_text or entity.identifying_value,
                    self.assets, self.records,
                )
            return self.coordinator.execute(operation, on_progress)

    def remove_gallery_asset(
        self,
        session: SessionContext,
        entity_id: str,
        key: str,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Delete one gallery image, then drop it from the entity.

        Raises:
            InvariantViolation: If the entity does not own *key*.
        """
        session.require_editor()
        with self._exclusive(entity_id):
            draft = self._unsaved.get(entity_id)
            if draft is not None:
                operation = ops.build_detach_draft_asset(draft, key, self.assets)
                return self.coordinator.execute(operation, on_progress)

            entity = self._require_saved(entity_id)
            operation = ops.build_detach_gallery_asset(entity, key, self.assets, self.records)
            return self.coordinator.execute(operation, on_progress)

    # ── Transitions ──────────────────────────────────────────────

    def publish(
        self,
        session: SessionContext,
        entity_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """draft → published, gated by the completeness evaluator.

        Returns an ``incomplete`` result carrying the missing fields, with
        nothing persisted, when the entity is not ready.
        """
        session.require_editor()
        with self._exclusive(entity_id):
            entity = self._require_saved(entity_id)
            if entity.status is EntityStatus.PUBLISHED:
                return self._noop("publish", "already published")
            report = evaluate(entity)
            if not report.complete:
                logger.info("Publish of %s blocked; missing %s", entity_id, report.missing)
                return OperationResult(
                    operation="publish",
                    outcome=Outcome.INCOMPLETE,
                    missing=report.missing,
                    detail=f"Missing required fields: {', '.join(report.missing)}",
                )
            return self.coordinator.execute(ops.build_publish(entity, self.records), on_progress)

    def unpublish(
        self,
        session: SessionContext,
        entity_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """published → draft, unconditionally."""
        session.require_editor()
        with self._exclusive(entity_id):
            entity = self._require_saved(entity_id)
            if entity.status is EntityStatus.DRAFT:
                return self._noop("unpublish", "already a draft")
            return self.coordinator.execute(ops.build_unpublish(entity, self.records), on_progress)

    def delete_entity(
        self,
        session: SessionContext,
        entity_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Delete every owned asset, then the row.  Terminal.

        Re-issuing the delete after a partial failure repeats the asset
        deletes harmlessly.  Once the row is gone, another delete reports ok.
        """
        session.require_editor()
        if entity_id in self._unsaved:
            raise InvalidTransitionError(f"{entity_id} was never saved; abandon the draft instead")
        with self._exclusive(entity_id):
            entity = self._find(entity_id)
            if entity is None:
                logger.info("Entity %s already deleted", entity_id)
                return self._noop("delete_entity", "already deleted")
            operation = ops.build_delete_entity(entity, self.assets, self.records)
            result = self.coordinator.execute(operation, on_progress)
            if result.ok:
                self._deleted.add(entity_id)
                logger.info("Deleted %s %s", entity.kind.value, entity_id)
            return result

    def abandon_draft(
        self,
        session: SessionContext,
        draft: Entity | str,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult:
        """Discard a never-saved draft, deleting any assets it uploaded.

        When a deletion fails the draft stays registered with its remaining
        assets and the result is marked retryable.
        """
        session.require_editor()
        if isinstance(draft, str):
            if draft not in self._unsaved:
                raise EntityNotFoundError(draft)
            draft = self._unsaved[draft]
        else:
            draft = self._unsaved.get(draft.id, draft)
        if self._find(draft.id, draft.kind) is not None:
            raise InvalidTransitionError(f"{draft.id} has been saved; delete it instead")

        with self._exclusive(draft.id):
            if not draft.assets:
                self._unsaved.pop(draft.id, None)
                return self._noop("abandon_draft", "no assets to clean up")
            self._unsaved[draft.id] = draft
            result = self.coordinator.execute(ops.build_abandon_draft(draft, self.assets), on_progress)
            if result.ok:
                self._unsaved.pop(draft.id, None)
                logger.info("Discarded draft %s", draft.id)
            else:
                result.retryable = True
                logger.warning(
                    "Cleanup of draft %s stopped with %d asset(s) left: %s",
                    draft.id, len(draft.assets), result.detail,
                )
            return result
