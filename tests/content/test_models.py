"""Tests for content models and row translation."""

from datetime import date

from mediadesk.content.models import (
    AssetRef,
    Entity,
    EntityKind,
    EntityStatus,
    OperatorProfile,
    OperatorRole,
    ProfileStatus,
    asset_key_from_url,
)
from mediadesk.content.rows import (
    entity_from_row,
    entity_to_row,
    profile_from_row,
    profile_to_row,
)


def _gallery(**kwargs: object) -> Entity:
    return Entity(
        kind=EntityKind.GALLERY,
        couple_names="Ana & Ben",
        primary_asset=AssetRef.from_url("https://cdn.test/galleries/1-cover.jpg"),
        gallery=[
            AssetRef.from_url("https://cdn.test/galleries/2-first.jpg"),
            AssetRef.from_url("https://cdn.test/galleries/3-second.jpg"),
        ],
        **kwargs,  # type: ignore[arg-type]
    )


class TestEntityKind:
    def test_tables(self):
        assert EntityKind.ARTICLE.table == "articles"
        assert EntityKind.GALLERY.table == "galleries"
        assert EntityKind.TESTIMONIAL.table == "testimonials"
        assert EntityKind.FILM.table == "films"

    def test_identifying_field(self):
        assert EntityKind.ARTICLE.identifying_field == "title"
        for kind in (EntityKind.GALLERY, EntityKind.TESTIMONIAL, EntityKind.FILM):
            assert kind.identifying_field == "couple_names"


class TestAssetKey:
    def test_last_two_segments(self):
        url = "https://bucket.nyc3.digitaloceanspaces.com/galleries/1718000000000-a.jpg"
        assert asset_key_from_url(url) == "galleries/1718000000000-a.jpg"

    def test_bare_key_passes_through(self):
        assert asset_key_from_url("/films/x.jpg") == "films/x.jpg"

    def test_from_url(self):
        ref = AssetRef.from_url("https://cdn.test/a/b/articles/9-x.png")
        assert ref.key == "articles/9-x.png"
        assert ref.url.endswith("9-x.png")


class TestEntity:
    def test_defaults(self):
        entity = Entity(kind=EntityKind.ARTICLE)
        assert entity.status == EntityStatus.DRAFT
        assert entity.id
        assert entity.assets == []

    def test_ids_unique(self):
        assert Entity(kind=EntityKind.FILM).id != Entity(kind=EntityKind.FILM).id

    def test_assets_primary_first(self):
        keys = [a.key for a in _gallery().assets]
        assert keys == ["galleries/1-cover.jpg", "galleries/2-first.jpg", "galleries/3-second.jpg"]

    def test_identifying_value_strips(self):
        assert Entity(kind=EntityKind.FILM, couple_names="  ").identifying_value == ""
        assert Entity(kind=EntityKind.ARTICLE, title=" Hi ").identifying_value == "Hi"


class TestRows:
    def test_assets_persist_as_urls(self):
        row = entity_to_row(_gallery())
        assert row["primary_image"] == "https://cdn.test/galleries/1-cover.jpg"
        assert row["gallery_images"] == [
            "https://cdn.test/galleries/2-first.jpg",
            "https://cdn.test/galleries/3-second.jpg",
        ]
        assert "primary_asset" not in row
        assert "gallery" not in row
        assert row["status"] == "draft"
        assert row["kind"] == "gallery"

    def test_row_without_assets(self):
        row = entity_to_row(Entity(kind=EntityKind.ARTICLE, title="T"))
        assert row["primary_image"] is None
        assert row["gallery_images"] == []

    def test_entity_from_row_recovers_keys(self):
        original = _gallery(event_date=date(2024, 6, 1), gallery_alts={"galleries/2-first.jpg": "first"})
        restored = entity_from_row(entity_to_row(original))
        assert restored.id == original.id
        assert restored.event_date == date(2024, 6, 1)
        assert [a.key for a in restored.assets] == [a.key for a in original.assets]
        assert restored.gallery_alts == {"galleries/2-first.jpg": "first"}

    def test_null_gallery_column(self):
        row = entity_to_row(Entity(kind=EntityKind.FILM, couple_names="C"))
        row["gallery_images"] = None
        assert entity_from_row(row).gallery == []

    def test_profile_rows(self):
        profile = OperatorProfile(
            id="u1", email="a@b.test", role=OperatorRole.ADMIN, status=ProfileStatus.INVITED
        )
        row = profile_to_row(profile)
        assert row["role"] == "admin"
        assert row["status"] == "invited"
        assert profile_from_row(row) == profile
