"""Artifact listing and retention."""

import logging
from pathlib import Path

from dbbackup.errors import ErrorKind, PruneError
from dbbackup.naming import parse_artifact_name
from dbbackup.schemas import ArtifactInfo, PruneResult
from dbbackup.verifier import metadata_path

logger = logging.getLogger(__name__)


def list_artifacts(directory: Path, database: str) -> list[ArtifactInfo]:
    """List a database's artifacts, newest first.

    Only files matching the artifact naming pattern count; partial dumps,
    sidecars and other databases' files are ignored. Ordering uses the
    timestamp embedded in the name, not the file mtime.

    Args:
        directory: Artifact directory.
        database: Database name.

    Returns:
        list[ArtifactInfo]: Artifacts sorted by (timestamp, sequence) descending.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    found = []
    for path in directory.iterdir():
        key = parse_artifact_name(database, path.name)
        if key is None or not path.is_file():
            continue
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            continue
        found.append(
            ArtifactInfo(
                name=path.name,
                path=str(path),
                size_bytes=size,
                timestamp=key.timestamp,
                sequence=key.sequence,
            )
        )

    found.sort(key=lambda a: (a.timestamp, a.sequence), reverse=True)
    return found


def prune(
    directory: Path,
    database: str,
    keep_count: int,
    protect: Path | None = None,
) -> PruneResult:
    """Delete all but the newest ``keep_count`` artifacts of a database.

    Args:
        directory: Artifact directory.
        database: Database name.
        keep_count: Artifacts to keep (>= 1).
        protect: Artifact that must survive regardless of its position.

    Returns:
        PruneResult: Removed paths in deletion order (oldest first) and one
            PruneError per file that could not be deleted.

    Raises:
        ValueError: If keep_count < 1.
    """
    if keep_count < 1:
        raise ValueError("keep_count must be at least 1")

    artifacts = list_artifacts(directory, database)
    protected = Path(protect).resolve() if protect else None
    result = PruneResult()

    for info in reversed(artifacts[keep_count:]):
        path = Path(info.path)
        if protected is not None and path.resolve() == protected:
            continue
        try:
            path.unlink()
        except OSError as e:
            error = PruneError(ErrorKind.DELETE_FAILED, f"Could not delete {path}: {e}", str(path))
            logger.warning(f"[{database}] {error.message}")
            result.errors.append(error)
            continue

        meta = metadata_path(path)
        try:
            meta.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[{database}] Could not delete sidecar {meta}: {e}")

        result.removed.append(path)
        logger.info(f"[{database}] Pruned {path.name}")

    return result
