"""Translation between ``Entity`` models and persisted rows.

Rows carry one column per asset slot holding the asset's public URL:
``primary_image`` (URL or null) and ``gallery_images`` (ordered URLs).
There is no separate asset table.
"""

from __future__ import annotations

from typing import Any

from mediadesk.content.models import AssetRef, Entity, OperatorProfile

_ASSET_FIELDS = {"primary_asset", "gallery"}


def entity_to_row(entity: Entity) -> dict[str, Any]:
    """Serialize an entity to its row layout."""
    row = entity.model_dump(mode="json", exclude=_ASSET_FIELDS)
    row["primary_image"] = entity.primary_asset.url if entity.primary_asset else None
    row["gallery_images"] = [asset.url for asset in entity.gallery]
    return row


def entity_from_row(row: dict[str, Any]) -> Entity:
    """Rebuild an entity from a stored row."""
    data = dict(row)
    primary = data.pop("primary_image", None)
    gallery = data.pop("gallery_images", None) or []
    data["primary_asset"] = AssetRef.from_url(primary) if primary else None
    data["gallery"] = [AssetRef.from_url(url) for url in gallery]
    return Entity.model_validate(data)


def profile_to_row(profile: OperatorProfile) -> dict[str, Any]:
    return profile.model_dump(mode="json")


def profile_from_row(row: dict[str, Any]) -> OperatorProfile:
    return OperatorProfile.model_validate(row)
