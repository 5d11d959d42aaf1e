"""Content domain models: pure Pydantic v2 data types.

These models represent the editorial content managed by the studio:
articles, wedding galleries, testimonials and films.  Every entity moves
through draft and published states and may own binary assets (images) held
in object storage.  Operator profiles mirror accounts held by the identity
provider.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from urllib.parse import urlparse
from uuid import uuid4

from pydantic import BaseModel, Field


class EntityKind(StrEnum):
    """Category of content entity."""

    ARTICLE = "article"
    GALLERY = "gallery"
    TESTIMONIAL = "testimonial"
    FILM = "film"

    @property
    def table(self) -> str:
        """Record-store table holding rows of this kind."""
        return _TABLES[self]

    @property
    def asset_folder(self) -> str:
        """Object-store folder for assets uploaded to this kind."""
        return _TABLES[self]

    @property
    def identifying_field(self) -> str:
        """The single field every saved entity of this kind must carry."""
        return "title" if self is EntityKind.ARTICLE else "couple_names"


_TABLES: dict[EntityKind, str] = {
    EntityKind.ARTICLE: "articles",
    EntityKind.GALLERY: "galleries",
    EntityKind.TESTIMONIAL: "testimonials",
    EntityKind.FILM: "films",
}

PROFILES_TABLE = "operator_profiles"


class EntityStatus(StrEnum):
    """Persisted visibility status."""

    DRAFT = "draft"
    PUBLISHED = "published"


class LifecycleState(StrEnum):
    """Lifecycle state tracked by the entity lifecycle manager."""

    NEW_UNSAVED = "new_unsaved"
    DRAFT = "draft"
    PUBLISHED = "published"
    DELETED = "deleted"


class OperatorRole(StrEnum):
    """Operator role; EDITOR is the least privileged."""

    ADMIN = "admin"
    EDITOR = "editor"


class ProfileStatus(StrEnum):
    INVITED = "invited"
    ACTIVE = "active"


def _now() -> datetime:
    return datetime.now(tz=UTC)


def asset_key_from_url(url: str) -> str:
    """Recover an object key (``folder/filename``) from its public URL."""
    if "://" not in url:
        return url.lstrip("/")
    path = urlparse(url).path.strip("/")
    return "/".join(path.split("/")[-2:])


class AssetRef(BaseModel):
    """A binary object in external storage, owned by one entity attribute."""

    key: str
    url: str

    @classmethod
    def from_url(cls, url: str) -> AssetRef:
        return cls(key=asset_key_from_url(url), url=url)


class Entity(BaseModel):
    """A content record.

    Scalar fields that a kind does not use simply stay empty.  Assets are
    held as ``AssetRef`` in memory and persisted as their public URL.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: EntityKind
    status: EntityStatus = EntityStatus.DRAFT
    title: str = ""
    slug: str = ""
    couple_names: str = ""
    event_date: date | None = None
    location: str = ""
    content: str = ""
    description: str = ""
    review: str = ""
    video_url: str | None = None
    meta_description: str = ""
    is_featured_home: bool = False
    is_featured_blog: bool = False
    primary_asset: AssetRef | None = None
    gallery: list[AssetRef] = Field(default_factory=list)
    gallery_alts: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    published_at: datetime | None = None

    @property
    def identifying_value(self) -> str:
        return str(getattr(self, self.kind.identifying_field) or "").strip()

    @property
    def assets(self) -> list[AssetRef]:
        """Owned assets in deletion order: primary first, then gallery."""
        owned = [self.primary_asset] if self.primary_asset else []
        return owned + list(self.gallery)


class OperatorProfile(BaseModel):
    """Operator row mirrored from an identity account."""

    id: str
    email: str
    role: OperatorRole = OperatorRole.EDITOR
    status: ProfileStatus = ProfileStatus.ACTIVE
    created_at: datetime = Field(default_factory=_now)


class IdentityAccount(BaseModel):
    """Account held by the identity provider."""

    id: str
    email: str
    role: OperatorRole | None = None
    confirmed_at: datetime | None = None
    created_at: datetime | None = None
