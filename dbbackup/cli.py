"""Command-line interface for dbbackup."""

import logging
import sys
from pathlib import Path

import click
from sqlalchemy.exc import SQLAlchemyError

from dbbackup import __version__
from dbbackup.config import get_settings, load_environment
from dbbackup.pipeline import BackupPipeline, combined_exit_code
from dbbackup.reporter import emit
from dbbackup.retention import list_artifacts, prune


def setup_logging(level: str) -> None:
    """Set up logging configuration.

    Log records go to stderr so stdout carries only artifact paths.

    Args:
        level: Log level string.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


@click.group()
@click.version_option(version=__version__)
def main():
    """dbbackup - MySQL backups for cron jobs and CI pipelines.

    Connection parameters are read from MYSQL_HOST, MYSQL_PORT, MYSQL_USER,
    MYSQL_PASSWORD and MYSQL_DATABASE (a .env file in the working directory
    is also read). Exit codes: 0 success, 1 configuration error, 2 dump
    failure, 3 verification failure.
    """
    pass


@main.command()
@click.option(
    "--db",
    "databases",
    multiple=True,
    help="Database to back up (repeat for several; default: MYSQL_DATABASE)",
)
@click.option(
    "--out",
    "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Artifact directory (default: BACKUP_DIR)",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Kill the dump after N seconds",
)
@click.option("--keep", type=click.IntRange(min=1), help="Keep only the newest N artifacts")
@click.option("--verify-preamble", is_flag=True, help="Require a mysqldump header")
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=".env",
    show_default=True,
    help="dotenv file merged under the process environment",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def run(
    databases: tuple[str, ...],
    output_dir: Path | None,
    timeout: float | None,
    keep: int | None,
    verify_preamble: bool,
    env_file: Path,
    verbose: bool,
):
    """Dump, verify and prune.

    On success the artifact path is printed alone on stdout:

        ARTIFACT=$(backup run --db mydatabase --out backups)
    """
    settings = get_settings()
    setup_logging("DEBUG" if verbose else settings.log_level)

    pipeline = BackupPipeline.from_settings(
        settings,
        timeout=timeout,
        keep=keep,
        require_preamble=verify_preamble or None,
    )
    outcomes = pipeline.run_many(
        load_environment(env_file),
        list(databases),
        output_dir,
        max_workers=settings.max_workers,
    )
    for outcome in outcomes:
        emit(outcome)

    sys.exit(combined_exit_code(outcomes))


@main.command("list")
@click.option("--db", "database", required=True, help="Database name")
@click.option(
    "--out",
    "output_dir",
    required=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Artifact directory",
)
def list_command(database: str, output_dir: Path):
    """List a database's artifacts, newest first."""
    artifacts = list_artifacts(output_dir, database)
    if not artifacts:
        click.echo("No backups found.", err=True)
        return

    for artifact in artifacts:
        size_mb = artifact.size_bytes / (1024 * 1024)
        click.echo(f"{artifact.path}\t{size_mb:.2f} MB\t{artifact.timestamp.isoformat()}")


@main.command("prune")
@click.option("--db", "database", required=True, help="Database name")
@click.option(
    "--out",
    "output_dir",
    required=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Artifact directory",
)
@click.option("--keep", required=True, type=click.IntRange(min=1), help="Artifacts to keep")
def prune_command(database: str, output_dir: Path, keep: int):
    """Delete all but the newest --keep artifacts."""
    setup_logging(get_settings().log_level)

    result = prune(output_dir, database, keep)
    for path in result.removed:
        click.echo(str(path))
    for error in result.errors:
        click.echo(f"warning: {error.message}", err=True)
    click.echo(f"Removed {len(result.removed)} artifact(s)", err=True)


@main.command()
@click.option("--db", "database", help="Only show runs for this database")
@click.option("--limit", default=20, show_default=True, type=click.IntRange(min=1))
def history(database: str | None, limit: int):
    """Show recorded backup runs (requires BACKUP_HISTORY_URL)."""
    settings = get_settings()
    if not settings.history_url:
        click.echo("History is disabled. Set BACKUP_HISTORY_URL to enable it.", err=True)
        sys.exit(1)

    from dbbackup.db.database import get_session_factory
    from dbbackup.db.history import list_runs

    try:
        db = get_session_factory(settings.history_url)()
        try:
            runs = list_runs(db, database=database, limit=limit)
        finally:
            db.close()
    except SQLAlchemyError as e:
        click.echo(f"Cannot read history: {e}", err=True)
        sys.exit(1)

    if not runs:
        click.echo("No runs recorded.", err=True)
        return

    for entry in runs:
        created = entry.created_at.isoformat() if entry.created_at else "-"
        line = f"{created}  {entry.database}  {entry.status}  exit={entry.exit_code}"
        if entry.filename:
            line += f"  {entry.filename}"
        if entry.error_kind:
            line += f"  ({entry.error_kind})"
        click.echo(line)


if __name__ == "__main__":
    main()
