"""Artifact file naming: ``{database}_backup_{YYYYmmdd_HHMMSS}[_{n}].sql``."""

import re
from datetime import UTC, datetime
from pathlib import Path
from typing import NamedTuple

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
ARTIFACT_SUFFIX = ".sql"


class ArtifactKey(NamedTuple):
    """Sort key embedded in an artifact name."""

    timestamp: datetime
    sequence: int


def artifact_name(database: str, timestamp: datetime, sequence: int = 0) -> str:
    """Build the filename for an artifact.

    Args:
        database: Database name.
        timestamp: Job time (UTC).
        sequence: Collision counter; 0 for the first artifact in a second.

    Returns:
        str: Filename without directory.
    """
    stamp = timestamp.strftime(TIMESTAMP_FORMAT)
    if sequence:
        return f"{database}_backup_{stamp}_{sequence}{ARTIFACT_SUFFIX}"
    return f"{database}_backup_{stamp}{ARTIFACT_SUFFIX}"


def _pattern(database: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(database)}_backup_(\d{{8}}_\d{{6}})(?:_(\d+))?{re.escape(ARTIFACT_SUFFIX)}$"
    )


def parse_artifact_name(database: str, filename: str) -> ArtifactKey | None:
    """Extract the timestamp and sequence from an artifact filename.

    Args:
        database: Database the file must belong to.
        filename: Filename without directory.

    Returns:
        ArtifactKey | None: Parsed key, or None if the name does not match.
    """
    match = _pattern(database).match(filename)
    if not match:
        return None
    try:
        timestamp = datetime.strptime(match.group(1), TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None
    return ArtifactKey(timestamp, int(match.group(2) or 0))


def next_artifact_path(directory: Path, database: str, timestamp: datetime) -> Path:
    """Return the first free artifact path for ``timestamp``.

    The caller must hold the database lock so the name stays free until the
    dump is renamed into place.
    """
    sequence = 0
    while True:
        candidate = directory / artifact_name(database, timestamp, sequence)
        partial = candidate.with_name(candidate.name + ".partial")
        if not candidate.exists() and not partial.exists():
            return candidate
        sequence += 1
