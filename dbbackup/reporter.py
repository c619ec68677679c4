"""Map job results to exit codes and output channels."""

import logging

import click

from dbbackup.errors import BackupError, ErrorKind, ExecutionError, VerificationError
from dbbackup.schemas import BackupArtifact, BackupJob, ExitOutcome, JobStatus, PruneResult

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_EXECUTION_ERROR = 2
EXIT_VERIFICATION_ERROR = 3


def report(
    job: BackupJob | None,
    artifact: BackupArtifact | None = None,
    error: BackupError | None = None,
    prune_result: PruneResult | None = None,
) -> ExitOutcome:
    """Decide the exit outcome of a pipeline run.

    Args:
        job: Job, or None if the pipeline stopped before one was created.
        artifact: Verified artifact, if verification passed.
        error: Error that stopped the pipeline, if any.
        prune_result: Retention outcome; its errors never change the exit code.

    Returns:
        ExitOutcome: Exit code, stdout line and diagnostic message.
    """
    if error is not None:
        return ExitOutcome(
            exit_code=error.exit_code,
            stdout=None,
            message=f"Backup failed ({error.kind.value}): {error.message}",
            error_kind=error.kind,
            job=job,
            prune=prune_result,
        )

    if job is None:
        raise ValueError("report() needs a job or an error")

    if job.status == JobStatus.FAILED:
        kind = job.error_kind or ErrorKind.NON_ZERO_EXIT
        return ExitOutcome(
            exit_code=ExecutionError.exit_code,
            stdout=None,
            message=f"Backup of {job.database} failed ({kind.value}): {job.error_detail}",
            error_kind=kind,
            job=job,
            prune=prune_result,
        )

    if job.status != JobStatus.SUCCEEDED or artifact is None:
        return ExitOutcome(
            exit_code=VerificationError.exit_code,
            stdout=None,
            message=f"Backup of {job.database} was not verified",
            error_kind=ErrorKind.NOT_SUCCEEDED,
            job=job,
            prune=prune_result,
        )

    message = f"Backup of {job.database} written to {artifact.path} ({artifact.size_bytes} bytes)"
    if prune_result is not None:
        if prune_result.removed:
            message += f"; pruned {len(prune_result.removed)} old artifact(s)"
        if prune_result.errors:
            message += f"; {len(prune_result.errors)} artifact(s) could not be pruned"

    return ExitOutcome(
        exit_code=EXIT_SUCCESS,
        stdout=str(artifact.path),
        message=message,
        job=job,
        artifact=artifact,
        prune=prune_result,
    )


def emit(outcome: ExitOutcome) -> None:
    """Write the artifact path to stdout and diagnostics to stderr."""
    if outcome.stdout:
        click.echo(outcome.stdout)
    click.echo(outcome.message, err=True)
    if outcome.prune is not None:
        for prune_error in outcome.prune.errors:
            click.echo(f"warning: {prune_error.message}", err=True)
