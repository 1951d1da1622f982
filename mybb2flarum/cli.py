"""Command-line interface for mybb2flarum.

This module provides a Typer-based CLI for migrating a MyBB forum into a
Flarum database.

Commands:
- init: Create the target forum tables
- verify: Check the legacy database connection and show row counts
- migrate: Run the migration
- status: Show target database statistics

Example:
    $ mybb2flarum init --with-uploads
    $ mybb2flarum verify
    $ mybb2flarum migrate --avatars --user-groups --attachments
    $ mybb2flarum status
"""

import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from mybb2flarum.assets import LocalFileStorage
from mybb2flarum.config import MigrationOptions, redact_url, settings
from mybb2flarum.database import DatabaseManager
from mybb2flarum.exceptions import SourceUnavailable
from mybb2flarum.metrics import write_metrics_file
from mybb2flarum.pipeline import COUNT_KINDS, MigrationPipeline, PipelineState
from mybb2flarum.source import SourceReader
from mybb2flarum.telemetry import shutdown_telemetry
from mybb2flarum.utils import format_iso

# Initialize CLI app
app     = typer.Typer(
    name="mybb2flarum",
    help="Migrate a MyBB forum to Flarum",
    add_completion=False,
)
console = Console()

EXIT_FAILED    = 1
EXIT_CANCELLED = 130


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise INFO
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        colorize=True,
        format="<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "{message}",
    )


def flag(enabled: bool) -> Optional[bool]:
    """CLI switches only ever turn a feature on; off defers to settings."""
    return True if enabled else None


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def init(
    with_uploads: bool = typer.Option(
        False,
        "--with-uploads",
        help="Also create the attachment (fof/upload) tables",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Drop and recreate the forum tables",
    ),
    target_url: Optional[str] = typer.Option(
        None,
        "--target-url",
        help="Target database URL (defaults to TARGET_URL)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Create the target forum tables.

    Examples:
        # Core tables only
        $ mybb2flarum init

        # Include the attachment subsystem
        $ mybb2flarum init --with-uploads

        # Start over
        $ mybb2flarum init --force
    """
    setup_logging(verbose)

    console.print("🏗️  [bold cyan]mybb2flarum Initialization[/bold cyan]\n")

    try:
        db = DatabaseManager(target_url)
        db.initialize(create_tables=False)

        if db.has_table("discussions") and not force:
            console.print(
                f"⚠️  Forum tables already exist in {db.display_url}\n"
                "Use --force to recreate them."
            )
            if with_uploads and not db.has_upload_tables():
                db.create_tables(with_uploads=True)
                console.print("✅ Upload tables added")
            db.close()
            return

        if force:
            db.drop_tables()

        db.create_tables(with_uploads=with_uploads)
        console.print(f"✅ Tables created in [yellow]{db.display_url}[/yellow]")
        if with_uploads:
            console.print("📎 Attachment subsystem installed")

        db.close()

        console.print("\n✅ [bold green]Initialization complete![/bold green]")
        console.print("\nNext steps:")
        console.print("  1. Set MYBB_URL (or MYBB_HOST, MYBB_USER, ...) and MYBB_PATH")
        console.print("  2. Run: mybb2flarum verify")
        console.print("  3. Run: mybb2flarum migrate")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"\n❌ [bold red]Initialization failed: {e}[/bold red]")
        raise typer.Exit(code=EXIT_FAILED)


@app.command()
def verify(
    source_url: Optional[str] = typer.Option(
        None,
        "--source-url",
        help="Legacy database URL (defaults to MYBB_URL or the MYBB_* settings)",
    ),
    prefix: Optional[str] = typer.Option(
        None,
        "--prefix",
        help="Legacy table prefix (defaults to MYBB_PREFIX)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Check the legacy database connection and show row counts.

    Examples:
        $ mybb2flarum verify
        $ mybb2flarum verify --source-url mysql+pymysql://root@localhost/mybb
    """
    setup_logging(verbose)

    console.print("🔐 [bold cyan]Legacy Database Check[/bold cyan]\n")

    reader = SourceReader(source_url, prefix=prefix)
    console.print(f"🌐 Source: [yellow]{redact_url(reader.url)}[/yellow]")
    console.print(f"🏷️  Prefix: [yellow]{reader.prefix}[/yellow]\n")

    try:
        reader.connect()
        counts = reader.summary()

        table = Table(title="Legacy Tables")
        table.add_column("Table", style="cyan")
        table.add_column("Rows", justify="right", style="green")
        for name, count in counts.items():
            table.add_row(reader.table(name), f"{count:,}")

        console.print(table)
        console.print("\n✅ [bold green]Connection successful![/bold green]")

    except SourceUnavailable as e:
        console.print(f"\n❌ [bold red]Cannot reach legacy database: {e}[/bold red]")
        raise typer.Exit(code=EXIT_FAILED)
    except Exception as e:
        console.print(f"\n❌ [bold red]Verification failed: {e}[/bold red]")
        raise typer.Exit(code=EXIT_FAILED)
    finally:
        reader.close()


@app.command()
def migrate(
    avatars: bool = typer.Option(False, "--avatars", help="Copy user avatars"),
    user_groups: bool = typer.Option(False, "--user-groups", help="Assign migrated groups to users"),
    soft_deleted_threads: bool = typer.Option(
        False, "--soft-deleted-threads", help="Migrate soft-deleted threads as hidden discussions"
    ),
    soft_deleted_posts: bool = typer.Option(
        False, "--soft-deleted-posts", help="Migrate soft-deleted posts as hidden posts"
    ),
    attachments: bool = typer.Option(False, "--attachments", help="Migrate post attachments"),
    skip_groups: bool = typer.Option(False, "--skip-groups", help="Keep existing groups"),
    skip_users: bool = typer.Option(False, "--skip-users", help="Keep existing users"),
    skip_categories: bool = typer.Option(False, "--skip-categories", help="Keep existing tags"),
    skip_discussions: bool = typer.Option(False, "--skip-discussions", help="Keep existing discussions"),
    source_url: Optional[str] = typer.Option(None, "--source-url", help="Legacy database URL"),
    target_url: Optional[str] = typer.Option(None, "--target-url", help="Target database URL"),
    legacy_path: Optional[Path] = typer.Option(
        None, "--legacy-path", help="Root of the legacy install (defaults to MYBB_PATH)"
    ),
    public_dir: Optional[Path] = typer.Option(
        None, "--public-dir", help="Target public directory (defaults to PUBLIC_DIR)"
    ),
    metrics_file: Optional[Path] = typer.Option(
        None, "--metrics-file", help="Write Prometheus metrics to this file after the run"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Migrate the legacy forum into the target database.

    Every enabled phase replaces the rows it owns in the target, so the
    command can be re-run safely. Press Ctrl+C to stop after the current
    discussion.

    Examples:
        # Everything, with files
        $ mybb2flarum migrate --avatars --user-groups --attachments

        # Re-import discussions only
        $ mybb2flarum migrate --skip-groups --skip-users --skip-categories
    """
    setup_logging(verbose)

    console.print("🚀 [bold cyan]mybb2flarum Migration[/bold cyan]\n")

    options = MigrationOptions.from_settings(
        settings,
        migrate_groups=not skip_groups,
        migrate_users=not skip_users,
        migrate_categories=not skip_categories,
        migrate_discussions=not skip_discussions,
        migrate_avatars=flag(avatars),
        migrate_with_user_groups=flag(user_groups),
        migrate_soft_deleted_threads=flag(soft_deleted_threads),
        migrate_soft_deleted_posts=flag(soft_deleted_posts),
        migrate_attachments=flag(attachments),
    )

    source = SourceReader(source_url)
    db     = DatabaseManager(target_url)
    storage = LocalFileStorage(public_dir or settings.public_dir or settings.data_dir / "public", settings.forum_url)

    console.print(f"📍 Source: [yellow]{redact_url(source.url)}[/yellow]")
    console.print(f"📍 Target: [yellow]{redact_url(db.url)}[/yellow]")
    for name, enabled in options.model_dump().items():
        console.print(f"  • {name}: {'[green]on[/green]' if enabled else '[dim]off[/dim]'}")
    console.print()

    try:
        source.connect()
    except SourceUnavailable as e:
        console.print(f"❌ [bold red]Cannot reach legacy database: {e}[/bold red]")
        raise typer.Exit(code=EXIT_FAILED)

    pipeline = MigrationPipeline(
        source=source,
        db=db,
        options=options,
        storage=storage,
        legacy_path=legacy_path,
    )

    def _handle_sigint(signum: int, frame: Any) -> None:
        console.print("\n⏹️  [yellow]Stopping after the current discussion...[/yellow]")
        pipeline.cancel()

    previous_handler = signal.signal(signal.SIGINT, _handle_sigint)

    try:
        result = pipeline.run()
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        pipeline.close()
        shutdown_telemetry()

    summary = Table(title="Migration Summary")
    summary.add_column("Entity", style="cyan")
    summary.add_column("Migrated", justify="right", style="green")
    summary.add_column("Skipped", justify="right", style="yellow")
    for kind in COUNT_KINDS:
        summary.add_row(kind.capitalize(), f"{result.counts.get(kind, 0):,}", f"{result.skipped.get(kind, 0):,}")

    console.print(summary)
    console.print(f"\n🕒 Started: {format_iso(result.started_at)}")
    console.print(f"⏱️  Duration: {result.duration_seconds:.1f}s")

    for error in result.errors:
        console.print(f"  ⚠️  {error}")

    if metrics_file is not None:
        write_metrics_file(metrics_file)

    if result.state == PipelineState.CANCELLED:
        console.print("\n⏹️  [bold yellow]Migration cancelled[/bold yellow]")
        raise typer.Exit(code=EXIT_CANCELLED)

    if result.state == PipelineState.FAILED:
        console.print("\n❌ [bold red]Migration failed[/bold red]")
        raise typer.Exit(code=EXIT_FAILED)

    console.print("\n✅ [bold green]Migration complete![/bold green]")


@app.command()
def status(
    target_url: Optional[str] = typer.Option(
        None,
        "--target-url",
        help="Target database URL (defaults to TARGET_URL)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Show target database statistics.

    Examples:
        $ mybb2flarum status
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]mybb2flarum Status[/bold cyan]\n")

    try:
        db = DatabaseManager(target_url)
        db.initialize(create_tables=False)

        config_table = Table(title="Configuration", show_header=False)
        config_table.add_column("Key", style="cyan")
        config_table.add_column("Value", style="yellow")

        config_table.add_row("Environment", settings.environment.value)
        config_table.add_row("Target Database", db.display_url)
        config_table.add_row("Public Directory", str(settings.public_dir))
        config_table.add_row("Legacy Database", settings.redacted_source_url)
        config_table.add_row("Legacy Path", str(settings.mybb_path or "not set"))
        config_table.add_row("Upload Subsystem", "installed" if db.has_upload_tables() else "not installed")

        console.print(config_table)
        console.print()

        counts = db.get_entity_counts()
        if not counts:
            console.print("⚠️  No forum tables found. Run: mybb2flarum init")
        else:
            stats_table = Table(title="Target Tables")
            stats_table.add_column("Table", style="cyan")
            stats_table.add_column("Rows", justify="right", style="green")
            for name, count in counts.items():
                stats_table.add_row(name, f"{count:,}")
            console.print(stats_table)

        db.close()

    except Exception as e:
        console.print(f"\n❌ [bold red]Status failed: {e}[/bold red]")
        raise typer.Exit(code=EXIT_FAILED)


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
