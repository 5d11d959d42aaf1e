"""Publish-readiness rules per entity kind.

``evaluate`` is pure: it never mutates the entity and performs no I/O.
Callers use the ``missing`` list for editor-facing diagnostics and to block
publishing.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from pydantic import BaseModel, Field

from mediadesk.content.models import Entity, EntityKind

_YOUTUBE_RE = re.compile(
    r"^https?://(?:(?:www\.|m\.)?youtube\.com/(?:watch\?(?:.*&)?v=|embed/)|youtu\.be/)"
    r"[A-Za-z0-9_-]{11}(?:[?&#].*)?$"
)
_VIMEO_RE = re.compile(
    r"^https?://(?:(?:www\.)?vimeo\.com/|player\.vimeo\.com/video/)\d+(?:[/?#].*)?$"
)

VIDEO_URL_PATTERNS: tuple[re.Pattern[str], ...] = (_YOUTUBE_RE, _VIMEO_RE)


class CompletenessReport(BaseModel):
    """Outcome of a readiness check."""

    complete: bool
    missing: list[str] = Field(default_factory=list)


def normalize_video_url(url: str | None) -> str | None:
    """Return the trimmed URL when it matches a recognised provider, else None."""
    if not url:
        return None
    candidate = url.strip()
    if any(pattern.match(candidate) for pattern in VIDEO_URL_PATTERNS):
        return candidate
    return None


def is_valid_video_url(url: str | None) -> bool:
    return normalize_video_url(url) is not None


def _text(field: str) -> Callable[[Entity], bool]:
    def check(entity: Entity) -> bool:
        return bool(str(getattr(entity, field) or "").strip())

    return check


def _present(field: str) -> Callable[[Entity], bool]:
    def check(entity: Entity) -> bool:
        return getattr(entity, field) is not None

    return check


def _has_gallery(entity: Entity) -> bool:
    return len(entity.gallery) >= 1


def _valid_video(entity: Entity) -> bool:
    return is_valid_video_url(entity.video_url)


# Ordered: ``missing`` is reported in this order.
REQUIRED_FIELDS: dict[EntityKind, list[tuple[str, Callable[[Entity], bool]]]] = {
    EntityKind.ARTICLE: [
        ("title", _text("title")),
        ("slug", _text("slug")),
        ("content", _text("content")),
    ],
    EntityKind.GALLERY: [
        ("couple_names", _text("couple_names")),
        ("event_date", _present("event_date")),
        ("location", _text("location")),
        ("description", _text("description")),
        ("primary_asset", _present("primary_asset")),
        ("gallery", _has_gallery),
    ],
    EntityKind.TESTIMONIAL: [
        ("couple_names", _text("couple_names")),
        ("event_date", _present("event_date")),
        ("location", _text("location")),
        ("review", _text("review")),
        ("video_url", _valid_video),
    ],
    EntityKind.FILM: [
        ("title", _text("title")),
        ("couple_names", _text("couple_names")),
        ("video_url", _valid_video),
    ],
}


def evaluate(entity: Entity) -> CompletenessReport:
    """Check whether *entity* satisfies the publish rules for its kind."""
    missing = [name for name, check in REQUIRED_FIELDS[entity.kind] if not check(entity)]
    return CompletenessReport(complete=not missing, missing=missing)


def check_draft(entity: Entity) -> list[str]:
    """Return the missing identifying field for a draft that must carry one.

    A draft needs nothing except its identifying field.  Callers apply this on
    every save and whenever an asset is attached to a saved draft.
    """
    if entity.identifying_value:
        return []
    return [entity.kind.identifying_field]
