"""Smoke tests for the CLI."""

import logging
from datetime import date
from pathlib import Path

import pytest
from mediadesk import config as config_module
from mediadesk.cli import app
from mediadesk.config import load_config
from mediadesk.content.models import EntityKind
from mediadesk.factory import build_services
from typer.testing import CliRunner


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch):
    """Local backends rooted in a temp dir with a local admin operator."""
    for key in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "MEDIADESK_SESSION_TOKEN",
                "MEDIADESK_STORAGE_BACKEND", "MEDIADESK_RECORDS_BACKEND"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config_module, "GLOBAL_CONFIG", tmp_path / "missing.toml")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MEDIADESK_MEDIA_DIR", str(tmp_path / "media"))
    monkeypatch.setenv("MEDIADESK_RECORDS_DIR", str(tmp_path / "records"))
    monkeypatch.setenv("MEDIADESK_LOCAL_OPERATOR", "owner@studio.test")
    return tmp_path


@pytest.fixture
def seeded(workspace):
    """One complete gallery and one incomplete film, both saved as drafts."""
    services = build_services(load_config())
    session = services.session_for(None)
    lifecycle = services.lifecycle

    gallery = lifecycle.new_draft(
        session,
        EntityKind.GALLERY,
        couple_names="Ana & Ben",
        event_date=date(2024, 6, 1),
        location="Lisbon",
        description="Summer",
    )
    lifecycle.upload_asset(session, gallery.id, "primary", b"cover", "cover.jpg")
    lifecycle.upload_asset(session, gallery.id, "gallery", b"one", "one.jpg")
    lifecycle.save(session, gallery)

    film = lifecycle.save(session, lifecycle.new_draft(session, EntityKind.FILM, couple_names="C & D"))
    services.close()
    return {"gallery": gallery.id, "film": film.id, "media": workspace / "media"}


class TestCLI:
    def test_main_help(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "publish" in result.output

    def test_main_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "mediadesk" in result.output

    def test_users_help(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["users", "--help"])
        assert result.exit_code == 0
        assert "deprovision" in result.output


class TestContentCommands:
    def test_list(self, runner: CliRunner, seeded) -> None:
        result = runner.invoke(app, ["list", "gallery", "--json"])
        assert result.exit_code == 0
        assert seeded["gallery"] in result.output

    def test_list_empty(self, runner: CliRunner, workspace) -> None:
        result = runner.invoke(app, ["list", "article"])
        assert result.exit_code == 0
        assert "No article entities found" in result.output

    def test_evaluate_incomplete(self, runner: CliRunner, seeded) -> None:
        result = runner.invoke(app, ["evaluate", seeded["film"]])
        assert result.exit_code == 1
        assert "title" in result.output
        assert "video_url" in result.output

    def test_publish_incomplete(self, runner: CliRunner, seeded) -> None:
        result = runner.invoke(app, ["publish", seeded["film"]])
        assert result.exit_code == 1
        assert "incomplete" in result.output

    def test_publish_and_unpublish(self, runner: CliRunner, seeded) -> None:
        published = runner.invoke(app, ["publish", seeded["gallery"]])
        assert published.exit_code == 0
        assert "publish: ok" in published.output

        unpublished = runner.invoke(app, ["unpublish", seeded["gallery"]])
        assert unpublished.exit_code == 0

    def test_delete(self, runner: CliRunner, seeded) -> None:
        result = runner.invoke(app, ["delete", seeded["gallery"], "--yes"])
        assert result.exit_code == 0
        assert "delete row: ok" in result.output
        assert not any(p.is_file() for p in seeded["media"].rglob("*"))

    def test_delete_requires_confirmation(self, runner: CliRunner, seeded) -> None:
        result = runner.invoke(app, ["delete", seeded["gallery"]], input="n\n")
        assert result.exit_code != 0
        assert any(p.is_file() for p in seeded["media"].rglob("*"))

    def test_unknown_entity(self, runner: CliRunner, workspace) -> None:
        result = runner.invoke(app, ["publish", "missing-id"])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestSessions:
    def test_requires_session(self, runner: CliRunner, workspace, monkeypatch) -> None:
        monkeypatch.delenv("MEDIADESK_LOCAL_OPERATOR")
        result = runner.invoke(app, ["list", "film"])
        assert result.exit_code == 1
        assert "session token" in result.output

    def test_token_without_identity_provider(self, runner: CliRunner, workspace) -> None:
        result = runner.invoke(app, ["--token", "abc", "list", "film"])
        assert result.exit_code == 1
        assert "identity provider" in result.output

    def test_users_need_identity_provider(self, runner: CliRunner, workspace) -> None:
        result = runner.invoke(app, ["users", "list"])
        assert result.exit_code == 1
        assert "No identity provider" in result.output


class TestLogging:
    def test_configured_level_applies(self, runner: CliRunner, workspace, monkeypatch) -> None:
        monkeypatch.setenv("MEDIADESK_LOG_LEVEL", "WARNING")
        result = runner.invoke(app, ["list", "film"])
        assert result.exit_code == 0
        assert logging.getLogger().level == logging.WARNING

    def test_verbose_forces_debug(self, runner: CliRunner, workspace, monkeypatch) -> None:
        monkeypatch.setenv("MEDIADESK_LOG_LEVEL", "WARNING")
        result = runner.invoke(app, ["--verbose", "list", "film"])
        assert result.exit_code == 0
        assert logging.getLogger().level == logging.DEBUG
