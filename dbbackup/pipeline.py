"""Backup pipeline: resolve -> lock -> dump -> verify -> prune -> report."""

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dbbackup.config import DATABASE_KEY, Settings, get_settings, resolve
from dbbackup.db.history import record_run
from dbbackup.errors import ConfigError, ErrorKind, ExecutionError, VerificationError
from dbbackup.executor import BackupExecutor
from dbbackup.lock import DatabaseLock
from dbbackup.reporter import report
from dbbackup.retention import prune
from dbbackup.schemas import BackupArtifact, BackupJob, ExitOutcome, JobStatus, PruneResult
from dbbackup.utils import clean_error
from dbbackup.verifier import verify

logger = logging.getLogger(__name__)

INVALID_SUFFIX = ".invalid"


class BackupPipeline:
    """Runs backup jobs end to end.

    The pipeline is the only place stage errors are caught; each one is
    turned into an :class:`ExitOutcome` by the reporter.
    """

    def __init__(
        self,
        executor: BackupExecutor | None = None,
        keep: int | None = None,
        require_preamble: bool = False,
        session_factory: Callable[[], Session] | None = None,
    ):
        """Initialize the pipeline.

        Args:
            executor: Dump executor (default: plain mysqldump, no timeout).
            keep: Artifacts to keep per database after a success (None = no pruning).
            require_preamble: Reject artifacts without a mysqldump header.
            session_factory: History session factory (None = history disabled).

        Raises:
            ValueError: If keep is below 1.
        """
        if keep is not None and keep < 1:
            raise ValueError("keep must be at least 1")
        self.executor = executor or BackupExecutor()
        self.keep = keep
        self.require_preamble = require_preamble
        self.session_factory = session_factory

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides) -> "BackupPipeline":
        """Build a pipeline from tool settings; keyword overrides win when not None."""
        settings = settings or get_settings()
        timeout = overrides.get("timeout")
        keep = overrides.get("keep")
        require_preamble = overrides.get("require_preamble")
        session_factory = overrides.get("session_factory")

        if session_factory is None and settings.history_url:
            from dbbackup.db.database import get_session_factory

            try:
                session_factory = get_session_factory(settings.history_url)
            except (SQLAlchemyError, OSError) as e:
                logger.warning(f"Run history disabled, cannot open history database: {e}")

        return cls(
            executor=BackupExecutor(
                dump_command=settings.dump_command,
                timeout=timeout if timeout is not None else settings.timeout,
            ),
            keep=keep if keep is not None else settings.keep,
            require_preamble=(
                require_preamble if require_preamble is not None else settings.verify_preamble
            ),
            session_factory=session_factory,
        )

    def run(
        self,
        environment: Mapping[str, str],
        database: str | None = None,
        output_dir: str | Path | None = None,
    ) -> ExitOutcome:
        """Run one backup job.

        Args:
            environment: Key-value source for connection parameters.
            database: Database name (overrides MYSQL_DATABASE).
            output_dir: Artifact directory (overrides BACKUP_DIR).

        Returns:
            ExitOutcome: Result to emit and exit with.
        """
        try:
            config = resolve(environment, database=database, output_dir=output_dir)
        except ConfigError as e:
            logger.error(f"Configuration error: {e.message}")
            outcome = report(None, error=e)
            self._record(database or environment.get(DATABASE_KEY, ""), outcome)
            return outcome

        job: BackupJob | None = None
        artifact: BackupArtifact | None = None
        prune_result: PruneResult | None = None

        try:
            with DatabaseLock(config.output_dir, config.database):
                job = self.executor.new_job(config)
                job = self.executor.execute(config, job)
                if job.status == JobStatus.SUCCEEDED:
                    try:
                        artifact = verify(job, require_preamble=self.require_preamble)
                    except VerificationError:
                        self._quarantine(job.target_path)
                        raise
                    if self.keep is not None:
                        prune_result = prune(
                            config.output_dir, config.database, self.keep, protect=artifact.path
                        )
            outcome = report(job, artifact, prune_result=prune_result)
        except (ExecutionError, VerificationError) as e:
            logger.error(f"[{config.database}] {e.message}")
            outcome = report(job, error=e)
        except OSError as e:
            error = ExecutionError(
                ErrorKind.OUTPUT_UNWRITABLE,
                clean_error(f"Cannot write to {config.output_dir}: {e}", config.secrets),
            )
            logger.error(f"[{config.database}] {error.message}")
            outcome = report(job, error=error)

        self._record(config.database, outcome)
        return outcome

    def run_many(
        self,
        environment: Mapping[str, str],
        databases: list[str],
        output_dir: str | Path | None = None,
        max_workers: int = 4,
    ) -> list[ExitOutcome]:
        """Run independent pipelines for several databases in parallel.

        Returns:
            list[ExitOutcome]: One outcome per database, in input order.
        """
        if len(databases) <= 1:
            return [self.run(environment, db, output_dir) for db in databases or [None]]

        workers = max(1, min(max_workers, len(databases)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="backup") as pool:
            futures = [pool.submit(self.run, environment, db, output_dir) for db in databases]
            return [f.result() for f in futures]

    def _quarantine(self, path: Path) -> None:
        """Rename a rejected artifact so retention and listing never see it."""
        try:
            path.rename(path.with_name(path.name + INVALID_SUFFIX))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not quarantine {path}: {e}")

    def _record(self, database: str, outcome: ExitOutcome) -> None:
        if self.session_factory is None:
            return
        try:
            db = self.session_factory()
            try:
                record_run(db, database, outcome)
            finally:
                db.close()
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Could not record backup history for {database}: {e}")


def combined_exit_code(outcomes: list[ExitOutcome]) -> int:
    """Highest exit code among several runs (0 only if all succeeded)."""
    return max((o.exit_code for o in outcomes), default=0)

