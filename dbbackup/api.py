"""HTTP trigger for backups, meant to be called by an external cron job.

Run with: uvicorn dbbackup.api:app
"""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from dbbackup import __version__
from dbbackup.config import OUTPUT_DIR_KEY, Settings, get_settings, load_environment
from dbbackup.db.database import get_db
from dbbackup.db.history import list_runs
from dbbackup.pipeline import BackupPipeline, combined_exit_code
from dbbackup.retention import list_artifacts
from dbbackup.schemas import ArtifactInfo, HistoryEntry

logger = logging.getLogger(__name__)

app = FastAPI(title="dbbackup", version=__version__, docs_url=None, redoc_url=None)


class RunRequest(BaseModel):
    """Request body for the run endpoint.

    Artifacts always go to BACKUP_DIR; callers cannot choose a directory.
    """

    model_config = ConfigDict(extra="forbid")

    databases: list[str] = Field(
        default_factory=list, description="Databases to back up (empty = MYSQL_DATABASE)"
    )
    keep: int | None = Field(default=None, ge=1, description="Artifacts to keep per database")
    timeout: float | None = Field(default=None, gt=0, description="Dump timeout in seconds")


class RunResult(BaseModel):
    """Outcome of a single database backup."""

    database: str | None
    exit_code: int
    artifact: str | None = None
    message: str


class RunResponse(BaseModel):
    """Response of the run endpoint."""

    exit_code: int
    results: list[RunResult]


def get_environment() -> Mapping[str, str]:
    """Connection parameter source for triggered runs."""
    return load_environment()


def get_pipeline_factory(settings: Annotated[Settings, Depends(get_settings)]):
    """Return a callable building a pipeline from per-request overrides."""

    def factory(**overrides) -> BackupPipeline:
        return BackupPipeline.from_settings(settings, **overrides)

    return factory


def require_cron_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Check the X-Cron-Secret header when a secret is configured.

    Raises:
        HTTPException: If the secret is configured and does not match.
    """
    if settings.cron_secret and x_cron_secret != settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/api/backups/run", response_model=RunResponse)
def run_backups(
    body: RunRequest,
    _: Annotated[None, Depends(require_cron_secret)],
    environment: Annotated[Mapping[str, str], Depends(get_environment)],
    pipeline_factory=Depends(get_pipeline_factory),
):
    """Run backups synchronously and return one result per database.

    The HTTP status is 200 whenever the request was processed; callers
    branch on ``exit_code`` exactly as they would on the CLI's exit status.
    """
    pipeline = pipeline_factory(keep=body.keep, timeout=body.timeout)
    outcomes = pipeline.run_many(environment, body.databases)

    results = []
    for i, outcome in enumerate(outcomes):
        if outcome.job is not None:
            database = outcome.job.database
        else:
            database = body.databases[i] if i < len(body.databases) else None
        results.append(
            RunResult(
                database=database,
                exit_code=outcome.exit_code,
                artifact=outcome.stdout,
                message=outcome.message,
            )
        )
    logger.info(f"Triggered backup of {len(results)} database(s)")
    return RunResponse(exit_code=combined_exit_code(outcomes), results=results)


@app.get("/api/backups", response_model=list[ArtifactInfo])
def api_list_backups(
    _: Annotated[None, Depends(require_cron_secret)],
    environment: Annotated[Mapping[str, str], Depends(get_environment)],
    database: str = Query(..., min_length=1),
):
    """List a database's artifacts in BACKUP_DIR, newest first."""
    directory = environment.get(OUTPUT_DIR_KEY)
    if not directory:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{OUTPUT_DIR_KEY} is not set",
        )
    return list_artifacts(Path(directory), database)


@app.get("/api/backups/history", response_model=list[HistoryEntry])
def api_history(
    _: Annotated[None, Depends(require_cron_secret)],
    db: Annotated[Session | None, Depends(get_db)],
    database: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    """Recorded backup runs, newest first."""
    if db is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="History is disabled",
        )
    return list_runs(db, database=database, limit=limit)
