"""
Tests for the inatsync CLI.

The sync service is replaced with stubs; these tests cover option parsing,
configuration overrides, report rendering and error exit codes.
"""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from inatsync import __version__
from inatsync.cli import app
from inatsync.cli.errors import ExitCode
from inatsync.cli.sync import build_config
from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.models import IdListingCache
from inatsync.core.cache.store import CacheStore
from inatsync.core.exceptions import CacheCorruptionError, StatusError
from inatsync.core.sync.models import SyncReport

runner = CliRunner()


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run each command from an empty project directory."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    return project


def report(**overrides) -> SyncReport:
    values = {
        "owner_id": 42,
        "login": "kueda",
        "listed": 3,
        "fetched": 2,
        "unchanged": 1,
        "written": {"observations": 2, "users": 1},
    }
    values.update(overrides)
    return SyncReport(**values)


class TestMainCallback:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "sync" in result.output
        assert "status" in result.output


class TestBuildConfig:
    """Test command-line overrides on top of loaded config."""

    def test_no_overrides(self, project_dir):
        config = build_config()
        assert config.api_url == "https://api.inaturalist.org/v1"

    def test_overrides(self, project_dir, tmp_path):
        config = build_config(
            endpoint="https://staging.test/v1",
            data_dir=tmp_path / "cache",
            workers=2,
            batch_size=5,
        )
        assert config.api_url == "https://staging.test/v1"
        assert config.data_dir == tmp_path / "cache"
        assert config.max_workers == 2
        assert config.batch_size == 5


class TestSyncCommand:
    """Test the sync command."""

    def test_requires_user(self, project_dir):
        result = runner.invoke(app, ["sync"])
        assert result.exit_code != 0

    def test_success_renders_report(self, project_dir, tmp_path):
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock(return_value=report())) as run:
            result = runner.invoke(
                app, ["sync", "--user", "kueda", "--data-dir", str(tmp_path / "cache")]
            )

        assert result.exit_code == 0, result.output
        assert "Sync Statistics" in result.output
        assert "observations" in result.output
        config, login = run.call_args.args
        assert login == "kueda"
        assert config.data_dir == tmp_path / "cache"

    def test_user_from_environment(self, project_dir, monkeypatch):
        monkeypatch.setenv("INATSYNC_USER", "kueda")
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock(return_value=report())) as run:
            result = runner.invoke(app, ["sync"])

        assert result.exit_code == 0, result.output
        assert run.call_args.args[1] == "kueda"

    def test_user_from_project_env_file(self, project_dir):
        (project_dir / ".env").write_text("INATSYNC_USER=from-dotenv\n")
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock(return_value=report())) as run:
            result = runner.invoke(app, ["sync"])

        assert result.exit_code == 0, result.output
        assert run.call_args.args[1] == "from-dotenv"

    def test_invalid_worker_budget(self, project_dir):
        """Test that workers >= batch size is a user error."""
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock()) as run:
            result = runner.invoke(
                app, ["sync", "-u", "kueda", "--workers", "10", "--batch-size", "10"]
            )

        assert result.exit_code == ExitCode.USER_ERROR
        assert "Invalid configuration" in result.output
        run.assert_not_called()

    def test_sync_error_exits_with_failure(self, project_dir):
        error = StatusError(503, "maintenance", url="/observations/3")
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock(side_effect=error)):
            result = runner.invoke(app, ["sync", "-u", "kueda"])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "bad status: 503" in result.output
        assert "--debug" in result.output

    def test_corruption_error_suggests_fix(self, project_dir, tmp_path):
        error = CacheCorruptionError(tmp_path / "x.yaml", "contains only one document")
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock(side_effect=error)):
            result = runner.invoke(app, ["sync", "-u", "kueda"])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "Delete" in result.output

    def test_unexpected_error(self, project_dir):
        with patch("inatsync.cli.sync.run_sync", new=AsyncMock(side_effect=RuntimeError("oops"))):
            result = runner.invoke(app, ["sync", "-u", "kueda"])

        assert result.exit_code == ExitCode.GENERAL_ERROR
        assert "Unexpected error" in result.output


class TestStatusCommand:
    """Test the status command."""

    def test_empty_cache(self, project_dir, tmp_path):
        result = runner.invoke(app, ["status", "--data-dir", str(tmp_path / "empty")])

        assert result.exit_code == 0
        assert "empty" in result.output

    def test_counts_and_users(self, project_dir, tmp_path):
        store = CacheStore(tmp_path / "cache")
        header = CacheHeader(date="2024-05-01T12:00:00+00:00")
        store.write_entity("users", 42, header, {"id": 42, "login": "kueda"})
        store.link_alias("users", "kueda", 42)
        store.write_id_listing(42, IdListingCache(header=header, ids=[1, 2]))
        for entity_id in (1, 2):
            store.write_entity("observations", entity_id, header, {"id": entity_id})

        result = runner.invoke(app, ["status", "--data-dir", str(tmp_path / "cache")])

        assert result.exit_code == 0, result.output
        assert "kueda" in result.output
        assert "Cached Entities" in result.output
        assert "observations" in result.output

    def test_corrupt_listing(self, project_dir, tmp_path):
        store = CacheStore(tmp_path / "cache")
        store.link_alias("users", "kueda", 42)
        store.listing_path(42).write_text("broken\n")
        store.write_entity(
            "observations", 1, CacheHeader(date="2024-05-01T12:00:00+00:00"), {"id": 1}
        )

        result = runner.invoke(app, ["status", "--data-dir", str(tmp_path / "cache")])

        assert result.exit_code == ExitCode.GENERAL_ERROR
