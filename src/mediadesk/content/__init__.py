"""Content domain: entity models, readiness rules and the local record store."""

from mediadesk.content.completeness import (
    CompletenessReport,
    check_draft,
    evaluate,
    normalize_video_url,
)
from mediadesk.content.models import (
    AssetRef,
    Entity,
    EntityKind,
    EntityStatus,
    IdentityAccount,
    LifecycleState,
    OperatorProfile,
    OperatorRole,
    ProfileStatus,
)
from mediadesk.content.store import JsonRecordStore

__all__ = [
    "AssetRef",
    "CompletenessReport",
    "Entity",
    "EntityKind",
    "EntityStatus",
    "IdentityAccount",
    "JsonRecordStore",
    "LifecycleState",
    "OperatorProfile",
    "OperatorRole",
    "ProfileStatus",
    "check_draft",
    "evaluate",
    "normalize_video_url",
]
