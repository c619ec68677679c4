"""Pydantic schemas for backup configuration, jobs and artifacts."""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from dbbackup.errors import ErrorKind, InvalidTransition, PruneError


class JobStatus(str, enum.Enum):
    """Lifecycle of a backup job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})


class BackupConfig(BaseModel):
    """Connection parameters for one database, resolved once per process."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(description="MySQL server host")
    port: int = Field(default=3306, description="MySQL server port")
    user: str = Field(description="MySQL user")
    password: SecretStr = Field(description="MySQL password, masked in repr")
    database: str = Field(description="Database to dump")
    output_dir: Path = Field(description="Directory receiving the artifacts")

    @property
    def secrets(self) -> list[str]:
        """Values that must never appear in logs or error text."""
        value = self.password.get_secret_value()
        return [value] if value else []


class BackupJob(BaseModel):
    """A single backup invocation.

    Status moves PENDING -> RUNNING -> SUCCEEDED | FAILED. Once terminal the
    job rejects any further change.
    """

    database: str = Field(description="Database being dumped")
    timestamp: datetime = Field(description="UTC time the job was created")
    target_path: Path = Field(description="Final artifact path")
    status: JobStatus = Field(default=JobStatus.PENDING)
    exit_code: int | None = Field(default=None, description="Dump process exit status")
    error_kind: ErrorKind | None = Field(default=None)
    error_detail: str | None = Field(default=None, description="Redacted, truncated stderr")
    duration_seconds: float | None = Field(default=None)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.status in TERMINAL_STATUSES:
            raise InvalidTransition(f"Job for {self.database} is already {self.status.value}")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def partial_path(self) -> Path:
        """Where the dump streams until the process exits cleanly."""
        return self.target_path.with_name(self.target_path.name + ".partial")

    def start(self) -> None:
        if self.status != JobStatus.PENDING:
            raise InvalidTransition(f"Cannot start a {self.status.value} job")
        self.status = JobStatus.RUNNING

    def succeed(self, exit_code: int = 0, duration: float | None = None) -> None:
        if self.status != JobStatus.RUNNING:
            raise InvalidTransition(f"Cannot complete a {self.status.value} job")
        self.exit_code = exit_code
        self.duration_seconds = duration
        self.status = JobStatus.SUCCEEDED

    def fail(
        self,
        kind: ErrorKind,
        detail: str,
        exit_code: int | None = None,
        duration: float | None = None,
    ) -> None:
        if self.is_terminal:
            raise InvalidTransition(f"Cannot fail a {self.status.value} job")
        self.exit_code = exit_code
        self.error_kind = kind
        self.error_detail = detail
        self.duration_seconds = duration
        self.status = JobStatus.FAILED


class BackupArtifact(BaseModel):
    """A verified dump file."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(description="Artifact location")
    database: str = Field(description="Database the dump belongs to")
    size_bytes: int = Field(description="File size")
    created_at: datetime = Field(description="Job timestamp (UTC)")
    checksum: str | None = Field(default=None, description="SHA-256 hex digest")


class ArtifactInfo(BaseModel):
    """An artifact found on disk by the retention manager."""

    name: str
    path: str
    size_bytes: int
    timestamp: datetime
    sequence: int = 0


class HistoryEntry(BaseModel):
    """A recorded backup run."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    database: str
    filename: str
    size_bytes: int
    duration_seconds: float
    status: str
    exit_code: int
    error_kind: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None


@dataclass
class PruneResult:
    """Outcome of a retention pass."""

    removed: list[Path] = field(default_factory=list)
    errors: list[PruneError] = field(default_factory=list)


@dataclass
class ExitOutcome:
    """What the process reports when a job ends.

    Attributes:
        exit_code: 0 on success, otherwise the failing error class' code.
        stdout: Artifact path on success, None otherwise.
        message: Human-readable diagnostic for stderr.
    """

    exit_code: int
    stdout: str | None
    message: str
    error_kind: ErrorKind | None = None
    job: BackupJob | None = None
    artifact: BackupArtifact | None = None
    prune: PruneResult | None = None
