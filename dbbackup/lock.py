"""Per-database sentinel lock.

A job holds ``{output_dir}/.{database}.lock`` for its whole run. The file is
created with O_CREAT | O_EXCL and records the owner pid, so a lock left by a
crashed process can be recognised and replaced. Creation and stale takeover
happen under an flock on ``.{database}.lock.guard`` so two processes can never
both replace the same stale lock.
"""

import fcntl
import logging
import os
from pathlib import Path

from dbbackup.errors import ErrorKind, ExecutionError

logger = logging.getLogger(__name__)

GUARD_SUFFIX = ".guard"


def lock_path(directory: Path, database: str) -> Path:
    """Sentinel location for a database."""
    return directory / f".{database}.lock"


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


def _read_owner(path: Path) -> int:
    """Pid recorded in a sentinel. Raises FileNotFoundError or ValueError."""
    return int(path.read_text().strip())


class DatabaseLock:
    """Exclusive lock on one database's artifact directory.

    Usage:
        with DatabaseLock(config.output_dir, config.database):
            ...

    Raises:
        ExecutionError: LOCKED if another live process holds the lock.
    """

    def __init__(self, directory: Path, database: str):
        self.directory = Path(directory)
        self.database = database
        self.path = lock_path(self.directory, database)
        self.guard_path = self.path.with_name(self.path.name + GUARD_SUFFIX)
        self._held = False

    def acquire(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self.guard_path, "a") as guard:
            fcntl.flock(guard, fcntl.LOCK_EX)
            self._acquire_guarded()

    def _acquire_guarded(self) -> None:
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._clear_stale():
                    continue
                raise ExecutionError(
                    ErrorKind.LOCKED,
                    f"Another backup of {self.database} is running (lock {self.path})",
                ) from None
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            logger.debug(f"Acquired lock {self.path}")
            return
        raise ExecutionError(ErrorKind.LOCKED, f"Could not acquire lock {self.path}")

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock {self.path} disappeared before release")
        self._held = False
        logger.debug(f"Released lock {self.path}")

    def _clear_stale(self) -> bool:
        """Remove the sentinel if its owner is gone. Returns True if removed."""
        try:
            owner = _read_owner(self.path)
        except FileNotFoundError:
            # Released between our open() and read
            return True
        except ValueError:
            # Being written right now, or garbage; treat as held
            return False

        if _pid_alive(owner):
            return False

        # Only remove the sentinel if it still names the dead owner
        try:
            current = _read_owner(self.path)
        except FileNotFoundError:
            return True
        except ValueError:
            return False
        if current != owner:
            return False

        logger.warning(f"Removing stale lock {self.path} left by pid {owner}")
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        return True

    def __enter__(self) -> "DatabaseLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
