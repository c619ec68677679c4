"""Pytest configuration and fixtures."""

import os
import stat
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from dbbackup.config import get_settings
from dbbackup.db.database import get_session_factory
from dbbackup.executor import BackupExecutor

SECRET = "s3cr3t-Pa55"

FIXED_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=UTC)

SAMPLE_DUMP = """-- MySQL dump 10.13  Distrib 8.0.36, for Linux (x86_64)
--
-- Host: 127.0.0.1    Database: mydatabase
-- ------------------------------------------------------
DROP TABLE IF EXISTS `employees`;
CREATE TABLE `employees` (
  `id` int NOT NULL AUTO_INCREMENT,
  `name` varchar(100) NOT NULL,
  PRIMARY KEY (`id`)
) ENGINE=InnoDB;
INSERT INTO employees VALUES (1,'Alice'),(2,'Bob'),(3,'Carol');
-- Dump completed on 2024-05-01 12:00:00
"""


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep the developer's environment out of every test."""
    for key in list(os.environ):
        if key.startswith(("BACKUP_", "MYSQL_")):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def environment(tmp_path) -> dict[str, str]:
    """Complete connection environment pointing at tmp_path/backups."""
    return {
        "MYSQL_HOST": "127.0.0.1",
        "MYSQL_PORT": "3306",
        "MYSQL_USER": "root",
        "MYSQL_PASSWORD": SECRET,
        "MYSQL_DATABASE": "mydatabase",
        "BACKUP_DIR": str(tmp_path / "backups"),
    }


@pytest.fixture
def make_dump_script(tmp_path) -> Callable[[str], Path]:
    """Write an executable stand-in for mysqldump.

    Returns a function taking the shell body and returning the script path.
    """
    counter = {"n": 0}

    def _make(body: str) -> Path:
        counter["n"] += 1
        script = tmp_path / f"fake_mysqldump_{counter['n']}.sh"
        script.write_text("#!/bin/sh\n" + body + "\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def good_dump(make_dump_script) -> Path:
    """Fake mysqldump printing a three-row employees dump."""
    return make_dump_script(f"cat <<'EOF'\n{SAMPLE_DUMP}EOF")


@pytest.fixture
def denied_dump(make_dump_script) -> Path:
    """Fake mysqldump failing authentication and echoing the password to stderr."""
    return make_dump_script(
        "echo \"mysqldump: Got error: 1045: Access denied for user 'root'@'127.0.0.1' "
        '(using password: $MYSQL_PWD)" >&2\n'
        "exit 2"
    )


@pytest.fixture
def empty_dump(make_dump_script) -> Path:
    """Fake mysqldump that exits 0 without writing anything."""
    return make_dump_script("exit 0")


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_TIME


@pytest.fixture
def executor_for(fixed_clock) -> Callable[..., BackupExecutor]:
    """Build an executor around a fake dump script with a fixed clock."""

    def _make(script: Path, timeout: float | None = None) -> BackupExecutor:
        return BackupExecutor(dump_command=str(script), timeout=timeout, clock=fixed_clock)

    return _make


@pytest.fixture
def history_factory():
    """In-memory history database session factory."""
    get_session_factory.cache_clear()
    factory = get_session_factory("sqlite:///:memory:")
    yield factory
    get_session_factory.cache_clear()
