"""Run mysqldump and stream its output into an artifact file."""

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from dbbackup.errors import ErrorKind
from dbbackup.naming import next_artifact_path
from dbbackup.schemas import BackupConfig, BackupJob, JobStatus
from dbbackup.utils import clean_error

logger = logging.getLogger(__name__)

DEFAULT_DUMP_ARGS = [
    "--single-transaction",
    "--routines",
    "--triggers",
    "--no-tablespaces",
]

COMMON_DUMP_PATHS = [
    "/usr/bin/mysqldump",
    "/usr/local/bin/mysqldump",
    "/usr/local/mysql/bin/mysqldump",
    "/opt/homebrew/bin/mysqldump",  # macOS Homebrew ARM
    "/usr/local/opt/mysql-client/bin/mysqldump",  # macOS Homebrew Intel
    "/usr/bin/mariadb-dump",
]


def find_dump_binary(command: str = "mysqldump") -> str | None:
    """Locate the dump executable.

    An explicit path is used as-is. A bare name is looked up on PATH, then in
    common MySQL client install locations.

    Args:
        command: Executable name or path.

    Returns:
        str | None: Path to the executable, or None if not found.
    """
    if os.sep in command:
        return command if Path(command).is_file() else None

    found = shutil.which(command)
    if found:
        return found

    if command == "mysqldump":
        for path in COMMON_DUMP_PATHS:
            if Path(path).exists():
                logger.info(f"Found mysqldump at {path}")
                return path

    return None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class BackupExecutor:
    """Executes one dump per call.

    Attributes:
        dump_command: mysqldump executable name or path.
        timeout: Seconds before the dump is killed (None = unbounded).
        clock: Returns the current UTC time; replaced in tests.
    """

    def __init__(
        self,
        dump_command: str = "mysqldump",
        timeout: float | None = None,
        extra_args: list[str] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.dump_command = dump_command
        self.timeout = timeout
        self.extra_args = extra_args if extra_args is not None else list(DEFAULT_DUMP_ARGS)
        self.clock = clock

    def build_command(self, binary: str, config: BackupConfig) -> list[str]:
        """Build the dump argv. The password travels in MYSQL_PWD, not here."""
        return [
            binary,
            f"--host={config.host}",
            f"--port={config.port}",
            f"--user={config.user}",
            *self.extra_args,
            config.database,
        ]

    def new_job(self, config: BackupConfig) -> BackupJob:
        """Create a PENDING job with a free target path.

        Must be called while holding the database lock.
        """
        config.output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = self.clock()
        return BackupJob(
            database=config.database,
            timestamp=timestamp,
            target_path=next_artifact_path(config.output_dir, config.database, timestamp),
        )

    def execute(self, config: BackupConfig, job: BackupJob | None = None) -> BackupJob:
        """Dump the database into the job's target path.

        stdout goes straight to ``{target}.partial`` through the file handle,
        so the dump is never held in memory. The partial file is renamed onto
        the target only when the process exits 0.

        Args:
            config: Resolved connection parameters.
            job: PENDING job from :meth:`new_job` (created if omitted).

        Returns:
            BackupJob: The job in SUCCEEDED or FAILED state.
        """
        if job is None:
            job = self.new_job(config)
        job.start()
        started = time.monotonic()
        secrets = config.secrets

        binary = find_dump_binary(self.dump_command)
        if binary is None:
            job.fail(
                ErrorKind.PROCESS_SPAWN_FAILURE,
                f"{self.dump_command} not found on PATH or in common install locations",
                duration=0.0,
            )
            logger.error(f"[{config.database}] {job.error_detail}")
            return job

        cmd = self.build_command(binary, config)
        env = os.environ.copy()
        env["MYSQL_PWD"] = config.password.get_secret_value()

        logger.info(f"[{config.database}] Dumping to {job.target_path}")
        partial = job.partial_path
        try:
            out = open(partial, "wb")
        except OSError as e:
            job.fail(
                ErrorKind.OUTPUT_UNWRITABLE,
                clean_error(f"Cannot write to {partial}: {e}", secrets),
                duration=round(time.monotonic() - started, 2),
            )
            logger.error(f"[{config.database}] {job.error_detail}")
            return job

        try:
            with out:
                try:
                    proc = subprocess.Popen(
                        cmd,
                        stdin=subprocess.DEVNULL,
                        stdout=out,
                        stderr=subprocess.PIPE,
                        env=env,
                    )
                except OSError as e:
                    job.fail(
                        ErrorKind.PROCESS_SPAWN_FAILURE,
                        clean_error(f"Could not start {binary}: {e}", secrets),
                        duration=round(time.monotonic() - started, 2),
                    )
                    logger.error(f"[{config.database}] {job.error_detail}")
                    return job

                try:
                    _, stderr = proc.communicate(timeout=self.timeout)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    _, stderr = proc.communicate()
                    job.fail(
                        ErrorKind.TIMEOUT,
                        f"Dump exceeded timeout of {self.timeout}s and was killed",
                        exit_code=proc.returncode,
                        duration=round(time.monotonic() - started, 2),
                    )
                    logger.error(f"[{config.database}] {job.error_detail}")
                    return job
        finally:
            if job.status == JobStatus.FAILED:
                self._discard_empty_partial(partial)

        duration = round(time.monotonic() - started, 2)
        diagnostics = clean_error((stderr or b"").decode("utf-8", errors="replace"), secrets)

        if proc.returncode != 0:
            job.fail(
                ErrorKind.NON_ZERO_EXIT,
                diagnostics or f"{Path(binary).name} exited with status {proc.returncode}",
                exit_code=proc.returncode,
                duration=duration,
            )
            logger.error(
                f"[{config.database}] Dump failed with exit code {proc.returncode}: "
                f"{job.error_detail}"
            )
            self._discard_empty_partial(partial)
            return job

        if diagnostics:
            logger.warning(f"[{config.database}] mysqldump stderr: {diagnostics}")

        os.replace(partial, job.target_path)
        job.succeed(exit_code=0, duration=duration)
        logger.info(f"[{config.database}] Dump finished in {duration:.1f}s")
        return job

    @staticmethod
    def _discard_empty_partial(partial: Path) -> None:
        """Delete a partial file with no bytes; keep non-empty ones for inspection."""
        try:
            if partial.stat().st_size == 0:
                partial.unlink()
            else:
                logger.warning(f"Partial dump left at {partial}")
        except FileNotFoundError:
            pass
