"""End-to-end tests for the backup pipeline."""

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from dbbackup.config import Settings
from dbbackup.db.history import list_runs
from dbbackup.errors import ErrorKind
from dbbackup.lock import lock_path
from dbbackup.naming import artifact_name, parse_artifact_name
from dbbackup.pipeline import INVALID_SUFFIX, BackupPipeline, combined_exit_code
from dbbackup.schemas import ExitOutcome, JobStatus

from conftest import SAMPLE_DUMP, SECRET


def _artifacts(directory, database="mydatabase"):
    if not directory.exists():
        return []
    return [p for p in directory.iterdir() if parse_artifact_name(database, p.name)]


@pytest.fixture
def backup_dir(environment):
    return Path(environment["BACKUP_DIR"])


@pytest.fixture
def spy_dump(make_dump_script, tmp_path):
    """Fake mysqldump that leaves a marker file when it runs."""
    marker = tmp_path / "spawned"
    script = make_dump_script(f"touch {marker}\nexit 0")
    return script, marker


class TestRun:
    """Test single database runs."""

    def test_successful_backup(self, environment, backup_dir, good_dump, executor_for):
        """A reachable database produces exactly one verified artifact."""
        pipeline = BackupPipeline(executor=executor_for(good_dump))

        outcome = pipeline.run(environment)

        assert outcome.exit_code == 0
        artifacts = _artifacts(backup_dir)
        assert len(artifacts) == 1
        assert outcome.stdout == str(artifacts[0])
        content = artifacts[0].read_text()
        assert "CREATE TABLE `employees`" in content
        assert "(1,'Alice'),(2,'Bob'),(3,'Carol')" in content
        assert outcome.artifact.size_bytes == len(SAMPLE_DUMP.encode())
        assert outcome.job.status == JobStatus.SUCCEEDED
        assert not lock_path(backup_dir, "mydatabase").exists()

    def test_invalid_credential(self, environment, backup_dir, denied_dump, executor_for):
        """Authentication failure exits 2, leaves no artifact and leaks no password."""
        environment["MYSQL_PASSWORD"] = SECRET
        pipeline = BackupPipeline(executor=executor_for(denied_dump))

        outcome = pipeline.run(environment)

        assert outcome.exit_code == 2
        assert outcome.stdout is None
        assert outcome.error_kind == ErrorKind.NON_ZERO_EXIT
        assert "Access denied" in outcome.message
        assert SECRET not in outcome.message
        assert _artifacts(backup_dir) == []

    def test_missing_config_spawns_nothing(self, environment, spy_dump, executor_for):
        script, marker = spy_dump
        del environment["MYSQL_HOST"]

        outcome = BackupPipeline(executor=executor_for(script)).run(environment)

        assert outcome.exit_code == 1
        assert outcome.error_kind == ErrorKind.MISSING_FIELD
        assert "MYSQL_HOST" in outcome.message
        assert not marker.exists()

    def test_held_lock_spawns_nothing(self, environment, backup_dir, spy_dump, executor_for):
        """A concurrent job for the same database fails with LOCKED."""
        script, marker = spy_dump
        backup_dir.mkdir(parents=True)
        lock_path(backup_dir, "mydatabase").write_text(str(os.getpid()))

        outcome = BackupPipeline(executor=executor_for(script)).run(environment)

        assert outcome.exit_code == 2
        assert outcome.error_kind == ErrorKind.LOCKED
        assert not marker.exists()
        assert lock_path(backup_dir, "mydatabase").exists()

    def test_empty_dump_fails_verification(
        self, environment, backup_dir, empty_dump, executor_for
    ):
        """Exit 0 with no output is exit 3 and the file is set aside."""
        outcome = BackupPipeline(executor=executor_for(empty_dump)).run(environment)

        assert outcome.exit_code == 3
        assert outcome.error_kind == ErrorKind.EMPTY
        assert outcome.stdout is None
        assert _artifacts(backup_dir) == []
        rejected = artifact_name("mydatabase", outcome.job.timestamp) + INVALID_SUFFIX
        assert (backup_dir / rejected).exists()

    def test_malformed_dump_with_preamble_check(
        self, environment, backup_dir, make_dump_script, executor_for
    ):
        script = make_dump_script("echo 'hello'")
        pipeline = BackupPipeline(executor=executor_for(script), require_preamble=True)

        outcome = pipeline.run(environment)

        assert outcome.exit_code == 3
        assert outcome.error_kind == ErrorKind.MALFORMED

    def test_unwritable_output_dir(self, environment, tmp_path, good_dump, executor_for):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")

        outcome = BackupPipeline(executor=executor_for(good_dump)).run(
            environment, output_dir=blocker
        )

        assert outcome.exit_code == 2
        assert outcome.error_kind == ErrorKind.OUTPUT_UNWRITABLE

    def test_overrides_win(self, environment, tmp_path, good_dump, executor_for):
        out = tmp_path / "override"

        outcome = BackupPipeline(executor=executor_for(good_dump)).run(
            environment, database="otherdb", output_dir=out
        )

        assert outcome.exit_code == 0
        assert len(_artifacts(out, "otherdb")) == 1

    def test_prunes_after_success(self, environment, backup_dir, good_dump, executor_for):
        """Older artifacts beyond keep are removed and the new one survives."""
        backup_dir.mkdir(parents=True)
        for day in (1, 2, 3):
            ts = datetime(2024, 4, day, tzinfo=UTC)
            (backup_dir / artifact_name("mydatabase", ts)).write_text("-- MySQL dump\n")

        outcome = BackupPipeline(executor=executor_for(good_dump), keep=2).run(environment)

        assert outcome.exit_code == 0
        remaining = sorted(p.name for p in _artifacts(backup_dir))
        assert remaining == [
            "mydatabase_backup_20240403_000000.sql",
            "mydatabase_backup_20240501_120000.sql",
        ]
        assert len(outcome.prune.removed) == 2

    def test_keep_must_be_positive(self):
        with pytest.raises(ValueError):
            BackupPipeline(keep=0)


class TestRunMany:
    """Test running several databases."""

    @pytest.fixture
    def picky_dump(self, make_dump_script):
        """Fails for the database named 'broken', dumps anything else."""
        return make_dump_script(
            'for last; do :; done\n'
            'if [ "$last" = broken ]; then echo "Unknown database" >&2; exit 2; fi\n'
            f"cat <<'EOF'\n{SAMPLE_DUMP}EOF"
        )

    def test_all_databases_backed_up(self, environment, backup_dir, good_dump, executor_for):
        pipeline = BackupPipeline(executor=executor_for(good_dump))

        outcomes = pipeline.run_many(environment, ["one", "two", "three"])

        assert [o.exit_code for o in outcomes] == [0, 0, 0]
        for name in ("one", "two", "three"):
            assert len(_artifacts(backup_dir, name)) == 1

    def test_outcomes_keep_input_order(self, environment, picky_dump, executor_for):
        pipeline = BackupPipeline(executor=executor_for(picky_dump))

        outcomes = pipeline.run_many(environment, ["one", "broken", "two"])

        assert [o.exit_code for o in outcomes] == [0, 2, 0]
        assert [o.job.database for o in outcomes] == ["one", "broken", "two"]
        assert combined_exit_code(outcomes) == 2

    def test_no_databases_uses_environment(self, environment, good_dump, executor_for):
        outcomes = BackupPipeline(executor=executor_for(good_dump)).run_many(environment, [])

        assert len(outcomes) == 1
        assert outcomes[0].job.database == "mydatabase"


class TestCombinedExitCode:
    def test_highest_code_wins(self):
        outcomes = [ExitOutcome(code, None, "") for code in (0, 3, 1)]
        assert combined_exit_code(outcomes) == 3

    def test_empty(self):
        assert combined_exit_code([]) == 0


class TestHistory:
    """Test run history recording."""

    def test_records_success_and_failure(
        self, environment, good_dump, denied_dump, executor_for, history_factory
    ):
        BackupPipeline(executor=executor_for(good_dump), session_factory=history_factory).run(
            environment
        )
        BackupPipeline(executor=executor_for(denied_dump), session_factory=history_factory).run(
            environment, database="otherdb"
        )

        db = history_factory()
        try:
            runs = list_runs(db)
            other = list_runs(db, database="otherdb")
        finally:
            db.close()

        assert len(runs) == 2
        by_db = {r.database: r for r in runs}
        assert by_db["mydatabase"].status == "succeeded"
        assert by_db["mydatabase"].exit_code == 0
        assert by_db["mydatabase"].filename == "mydatabase_backup_20240501_120000.sql"
        assert by_db["otherdb"].status == "failed"
        assert by_db["otherdb"].exit_code == 2
        assert by_db["otherdb"].error_kind == "non_zero_exit"
        assert SECRET not in by_db["otherdb"].error_message
        assert [r.database for r in other] == ["otherdb"]

    def test_records_config_errors(self, environment, good_dump, executor_for, history_factory):
        del environment["MYSQL_USER"]

        BackupPipeline(executor=executor_for(good_dump), session_factory=history_factory).run(
            environment
        )

        db = history_factory()
        try:
            (entry,) = list_runs(db)
        finally:
            db.close()
        assert entry.exit_code == 1
        assert entry.error_kind == "missing_field"
        assert entry.database == "mydatabase"


class TestFromSettings:
    """Test building a pipeline from settings."""

    def test_settings_values(self):
        settings = Settings(_env_file=None, dump_command="mariadb-dump", timeout=30, keep=7)

        pipeline = BackupPipeline.from_settings(settings)

        assert pipeline.executor.dump_command == "mariadb-dump"
        assert pipeline.executor.timeout == 30
        assert pipeline.keep == 7
        assert pipeline.session_factory is None

    def test_overrides_win(self):
        settings = Settings(_env_file=None, timeout=30, keep=7)

        pipeline = BackupPipeline.from_settings(
            settings, timeout=5, keep=2, require_preamble=True
        )

        assert pipeline.executor.timeout == 5
        assert pipeline.keep == 2
        assert pipeline.require_preamble is True

    def test_none_overrides_fall_back(self):
        settings = Settings(_env_file=None, keep=7)

        assert BackupPipeline.from_settings(settings, keep=None).keep == 7

    def test_unopenable_history_does_not_block_backup(
        self, environment, backup_dir, good_dump, tmp_path
    ):
        """A broken history URL is logged and the backup still runs."""
        settings = Settings(
            _env_file=None,
            dump_command=str(good_dump),
            history_url=f"sqlite:///{tmp_path / 'no' / 'such' / 'dir' / 'history.db'}",
        )

        pipeline = BackupPipeline.from_settings(settings)
        outcome = pipeline.run(environment)

        assert pipeline.session_factory is None
        assert outcome.exit_code == 0
        assert len(_artifacts(backup_dir)) == 1

    def test_failing_history_session_keeps_exit_code(self, environment, good_dump, executor_for):
        def broken_session():
            raise OperationalError("connect", {}, Exception("server has gone away"))

        pipeline = BackupPipeline(executor=executor_for(good_dump), session_factory=broken_session)

        assert pipeline.run(environment).exit_code == 0
