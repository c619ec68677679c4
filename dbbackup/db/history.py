"""Recording and querying backup runs."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dbbackup.db.models import BackupLog
from dbbackup.schemas import ExitOutcome, HistoryEntry, JobStatus

logger = logging.getLogger(__name__)


def record_run(db: Session, database: str, outcome: ExitOutcome) -> BackupLog | None:
    """Store the outcome of one pipeline run.

    History is best-effort: a failing history database is logged and never
    changes the run's exit code.

    Args:
        db: History session.
        database: Database the run targeted.
        outcome: Reported outcome.

    Returns:
        BackupLog | None: Stored row, or None if the write failed.
    """
    job = outcome.job
    artifact = outcome.artifact
    if outcome.exit_code == 0:
        status = JobStatus.SUCCEEDED.value
    else:
        status = JobStatus.FAILED.value

    log = BackupLog(
        database=database,
        filename=job.target_path.name if job is not None else "",
        size_bytes=artifact.size_bytes if artifact is not None else 0,
        duration_seconds=(job.duration_seconds or 0.0) if job is not None else 0.0,
        status=status,
        exit_code=outcome.exit_code,
        error_kind=outcome.error_kind.value if outcome.error_kind else None,
        error_message=None if outcome.exit_code == 0 else outcome.message[:2000],
        checksum=artifact.checksum if artifact is not None else None,
    )
    if job is not None:
        log.created_at = job.timestamp.replace(tzinfo=None)

    try:
        db.add(log)
        db.commit()
        db.refresh(log)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Could not record backup history for {database}: {e}")
        return None
    return log


def list_runs(db: Session, database: str | None = None, limit: int = 50) -> list[HistoryEntry]:
    """Return recorded runs, newest first."""
    stmt = select(BackupLog).order_by(BackupLog.created_at.desc()).limit(limit)
    if database:
        stmt = stmt.where(BackupLog.database == database)
    return [HistoryEntry.model_validate(log) for log in db.scalars(stmt)]
