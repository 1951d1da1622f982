"""Unit tests for CLI commands."""

from datetime import datetime, timezone

import pytest
import typer
from typer.testing import CliRunner

from mybb2flarum.cli import EXIT_CANCELLED, EXIT_FAILED, app, flag
from mybb2flarum.config import settings
from mybb2flarum.database import DatabaseManager
from mybb2flarum.models import DiscussionRow
from mybb2flarum.pipeline import MigrationResult, PipelineState
from mybb2flarum.utils import format_iso

runner = CliRunner()


@pytest.fixture(autouse=True)
def single_connect_attempt(monkeypatch):
    """Fail fast on unreachable databases instead of backing off."""
    monkeypatch.setattr(settings, "connect_retries", 1)


@pytest.fixture
def cli_target(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli' / 'flarum.db'}"


def debug_output(result) -> None:
    if result.exit_code != 0:
        print(f"stdout: {result.stdout}")
        if result.exception:
            print(f"exception: {result.exception}")


class TestCLICommands:
    """Tests for CLI commands."""

    def test_cli_app_exists(self):
        """Test CLI app is defined."""
        assert isinstance(app, typer.Typer)

    def test_flag(self):
        assert flag(True) is True
        assert flag(False) is None

    def test_init_command(self, cli_target):
        """Test init command."""
        result = runner.invoke(app, ["init", "--target-url", cli_target])
        debug_output(result)

        assert result.exit_code == 0
        assert "Tables created in" in result.stdout

    def test_init_existing_tables(self, cli_target):
        runner.invoke(app, ["init", "--target-url", cli_target])

        result = runner.invoke(app, ["init", "--target-url", cli_target])

        assert result.exit_code == 0
        assert "already exist" in result.stdout

    def test_init_adds_upload_tables(self, cli_target):
        runner.invoke(app, ["init", "--target-url", cli_target])

        result = runner.invoke(app, ["init", "--with-uploads", "--target-url", cli_target])

        db = DatabaseManager(cli_target)
        db.initialize(create_tables=False)
        try:
            assert result.exit_code == 0
            assert "Upload tables added" in result.stdout
            assert db.has_upload_tables()
        finally:
            db.close()

    def test_init_force(self, cli_target):
        """Test init command with force flag."""
        runner.invoke(app, ["init", "--target-url", cli_target])

        result = runner.invoke(app, ["init", "--force", "--with-uploads", "--target-url", cli_target])

        assert result.exit_code == 0
        assert "Tables created in" in result.stdout
        assert "Attachment subsystem installed" in result.stdout

    def test_verify_command_success(self, legacy_url):
        """Test verify command against a reachable legacy database."""
        result = runner.invoke(app, ["verify", "--source-url", legacy_url, "--prefix", "mybb_"])
        debug_output(result)

        assert result.exit_code == 0
        assert "Legacy Tables" in result.stdout
        assert "mybb_posts" in result.stdout
        assert "Connection successful!" in result.stdout

    def test_verify_command_unreachable(self, tmp_path):
        result = runner.invoke(app, ["verify", "--source-url", f"sqlite:///{tmp_path}/gone/mybb.db"])

        assert result.exit_code == EXIT_FAILED
        assert "Cannot reach legacy database" in result.stdout

    def test_verify_command_wrong_prefix(self, legacy_url):
        result = runner.invoke(app, ["verify", "--source-url", legacy_url, "--prefix", "phpbb_"])

        assert result.exit_code == EXIT_FAILED
        assert "Verification failed" in result.stdout

    def test_migrate_command(self, legacy_url, legacy_path, cli_target, tmp_path):
        """Test a full migration through the CLI."""
        public = tmp_path / "public"
        metrics = tmp_path / "metrics" / "run.prom"

        result = runner.invoke(
            app,
            [
                "migrate",
                "--avatars",
                "--user-groups",
                "--source-url",
                legacy_url,
                "--target-url",
                cli_target,
                "--legacy-path",
                str(legacy_path),
                "--public-dir",
                str(public),
                "--metrics-file",
                str(metrics),
            ],
        )
        debug_output(result)

        assert result.exit_code == 0
        assert "Migration Summary" in result.stdout
        assert "Migration complete!" in result.stdout
        assert (public / "assets" / "avatars" / "avatar_2.png").is_file()
        assert "entities_migrated_total" in metrics.read_text()

        db = DatabaseManager(cli_target)
        db.initialize(create_tables=False)
        try:
            assert db.repo(DiscussionRow).count() == 2
        finally:
            db.close()

    def test_migrate_command_unreachable(self, tmp_path, cli_target):
        result = runner.invoke(
            app,
            ["migrate", "--source-url", f"sqlite:///{tmp_path}/gone/mybb.db", "--target-url", cli_target],
        )

        assert result.exit_code == EXIT_FAILED
        assert "Cannot reach legacy database" in result.stdout

    @pytest.mark.parametrize(
        ("state", "exit_code", "message"),
        [
            (PipelineState.CANCELLED, EXIT_CANCELLED, "Migration cancelled"),
            (PipelineState.FAILED, EXIT_FAILED, "Migration failed"),
        ],
    )
    def test_migrate_exit_codes(self, mocker, legacy_url, cli_target, state, exit_code, message):
        now = datetime.now(timezone.utc)
        pipeline_cls = mocker.patch("mybb2flarum.cli.MigrationPipeline")
        shutdown = mocker.patch("mybb2flarum.cli.shutdown_telemetry")
        pipeline_cls.return_value.run.return_value = MigrationResult(
            state=state,
            counts={"groups": 3},
            errors=["discussions: boom"],
            started_at=now,
            finished_at=now,
        )

        result = runner.invoke(
            app,
            ["migrate", "--source-url", legacy_url, "--target-url", cli_target],
        )

        assert result.exit_code == exit_code
        assert message in result.stdout
        assert "discussions: boom" in result.stdout
        pipeline_cls.return_value.close.assert_called_once()
        shutdown.assert_called_once()
        assert f"Started: {format_iso(now)}" in result.stdout

    def test_status_command(self, cli_target):
        """Test status command."""
        runner.invoke(app, ["init", "--target-url", cli_target])

        result = runner.invoke(app, ["status", "--target-url", cli_target])
        debug_output(result)

        assert result.exit_code == 0
        assert "Configuration" in result.stdout
        assert "Target Tables" in result.stdout
        assert "discussions" in result.stdout

    def test_status_without_tables(self, cli_target):
        result = runner.invoke(app, ["status", "--target-url", cli_target])

        assert result.exit_code == 0
        assert "No forum tables found" in result.stdout
