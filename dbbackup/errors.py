"""Error taxonomy for backup jobs.

Each error class maps to the process exit code the CLI returns for it, so
cron wrappers and CI steps can branch on the failure class.
"""

import enum


class ErrorKind(str, enum.Enum):
    """Specific reason behind a backup failure."""

    # ConfigError
    MISSING_FIELD = "missing_field"
    INVALID_FIELD = "invalid_field"
    # ExecutionError
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"
    PROCESS_SPAWN_FAILURE = "process_spawn_failure"
    LOCKED = "locked"
    OUTPUT_UNWRITABLE = "output_unwritable"
    # VerificationError
    MISSING = "missing"
    EMPTY = "empty"
    MALFORMED = "malformed"
    NOT_SUCCEEDED = "not_succeeded"
    # PruneError
    DELETE_FAILED = "delete_failed"


class BackupError(Exception):
    """Base class for all backup failures."""

    exit_code = 1

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ConfigError(BackupError):
    """Connection parameters are missing or invalid."""

    exit_code = 1

    def __init__(self, kind: ErrorKind, message: str, field: str | None = None):
        super().__init__(kind, message)
        self.field = field


class ExecutionError(BackupError):
    """The dump process could not run or did not finish cleanly."""

    exit_code = 2


class VerificationError(BackupError):
    """The dump finished but its artifact cannot be trusted."""

    exit_code = 3


class PruneError(BackupError):
    """An old artifact could not be deleted. Never fatal to a job."""

    exit_code = 0

    def __init__(self, kind: ErrorKind, message: str, path: str):
        super().__init__(kind, message)
        self.path = path


class InvalidTransition(Exception):
    """A job was moved out of a terminal state."""

    pass
