"""Post-dump integrity checks.

mysqldump can exit 0 and still leave an empty file (for example when the
user lacks privileges on every table), so a zero exit status alone never
makes an artifact trustworthy.
"""

import hashlib
import json
import logging
from pathlib import Path

from dbbackup.errors import ErrorKind, VerificationError
from dbbackup.schemas import BackupArtifact, BackupJob, JobStatus

logger = logging.getLogger(__name__)

PREAMBLE_MARKERS = (b"-- MySQL dump", b"-- MariaDB dump")
PREAMBLE_WINDOW = 4096
CHUNK_SIZE = 64 * 1024
METADATA_SUFFIX = ".meta.json"


def compute_sha256(path: Path) -> str:
    """Compute SHA-256 hash of a file without loading it whole."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def metadata_path(artifact_path: Path) -> Path:
    return artifact_path.with_name(artifact_path.name + METADATA_SUFFIX)


def has_preamble(path: Path) -> bool:
    """Check that the file starts like a mysqldump/mariadb-dump output."""
    with open(path, "rb") as f:
        head = f.read(PREAMBLE_WINDOW)
    return any(marker in head for marker in PREAMBLE_MARKERS)


def verify(job: BackupJob, *, require_preamble: bool = False) -> BackupArtifact:
    """Turn a SUCCEEDED job into a trusted artifact.

    Args:
        job: Job returned by the executor.
        require_preamble: Also require a mysqldump header in the file.

    Returns:
        BackupArtifact: Verified artifact with its checksum.

    Raises:
        VerificationError: NOT_SUCCEEDED, MISSING, EMPTY or MALFORMED.
    """
    if job.status != JobStatus.SUCCEEDED:
        raise VerificationError(
            ErrorKind.NOT_SUCCEEDED,
            f"Job for {job.database} is {job.status.value}; nothing to verify",
        )

    path = job.target_path
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        raise VerificationError(ErrorKind.MISSING, f"Artifact {path} does not exist") from None

    if size == 0:
        raise VerificationError(ErrorKind.EMPTY, f"Artifact {path} is empty")

    if require_preamble and not has_preamble(path):
        raise VerificationError(
            ErrorKind.MALFORMED, f"Artifact {path} does not start with a mysqldump header"
        )

    artifact = BackupArtifact(
        path=path,
        database=job.database,
        size_bytes=size,
        created_at=job.timestamp,
        checksum=compute_sha256(path),
    )
    write_metadata(artifact)
    logger.info(f"[{job.database}] Verified {path} ({size} bytes)")
    return artifact


def write_metadata(artifact: BackupArtifact) -> Path:
    """Write the ``.meta.json`` sidecar next to an artifact."""
    meta_file = metadata_path(artifact.path)
    with open(meta_file, "w") as f:
        json.dump(
            {
                "database": artifact.database,
                "file": artifact.path.name,
                "size_bytes": artifact.size_bytes,
                "sha256": artifact.checksum,
                "created_at": artifact.created_at.isoformat(),
            },
            f,
            indent=2,
        )
    return meta_file
