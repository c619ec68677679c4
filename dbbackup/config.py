"""Configuration: tool settings and connection parameter resolution.

Tool-level settings (timeouts, retention, history database) are loaded with
pydantic-settings from ``BACKUP_*`` variables. Connection parameters are
resolved separately by :func:`resolve` from an explicit key-value mapping so
no other component reads the ambient environment.
"""

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbbackup.errors import ConfigError, ErrorKind
from dbbackup.schemas import BackupConfig

# Environment keys read by resolve()
HOST_KEY = "MYSQL_HOST"
PORT_KEY = "MYSQL_PORT"
USER_KEY = "MYSQL_USER"
PASSWORD_KEY = "MYSQL_PASSWORD"
DATABASE_KEY = "MYSQL_DATABASE"
OUTPUT_DIR_KEY = "BACKUP_DIR"

DEFAULT_PORT = 3306


class Settings(BaseSettings):
    """Tool settings loaded from BACKUP_* environment variables.

    Attributes:
        log_level: Logging level for the CLI.
        dump_command: mysqldump executable name or path.
        timeout: Seconds before the dump process is killed (None = no limit).
        keep: Artifacts to retain per database after a run (None = no pruning).
        verify_preamble: Require a mysqldump header in every artifact.
        history_url: SQLAlchemy URL for run history (empty = disabled).
        cron_secret: Secret expected in X-Cron-Secret by the HTTP trigger.
        max_workers: Parallel pipelines when several databases are requested.
    """

    model_config = SettingsConfigDict(
        env_prefix="BACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = "INFO"
    dump_command: str = "mysqldump"
    timeout: float | None = None
    keep: int | None = None
    verify_preamble: bool = False
    history_url: str = ""
    cron_secret: str = ""
    max_workers: int = 4


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Tool settings.
    """
    return Settings()


def load_environment(env_file: str | Path | None = ".env") -> dict[str, str]:
    """Build the key-value mapping handed to :func:`resolve`.

    Values from ``env_file`` are used only where the process environment does
    not define the key.

    Args:
        env_file: Optional dotenv file.

    Returns:
        dict[str, str]: Merged environment.
    """
    merged: dict[str, str] = {}
    if env_file and Path(env_file).is_file():
        merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    merged.update(os.environ)
    return merged


def _require(
    environment: Mapping[str, str], key: str, override: str | None = None, strip: bool = True
) -> str:
    value = override if override else environment.get(key, "")
    if not value or not value.strip():
        raise ConfigError(
            ErrorKind.MISSING_FIELD,
            f"Required setting {key} is not set",
            field=key,
        )
    return value.strip() if strip else value


def resolve(
    environment: Mapping[str, str],
    *,
    database: str | None = None,
    output_dir: str | Path | None = None,
) -> BackupConfig:
    """Resolve connection parameters for one database.

    Args:
        environment: Key-value source (usually :func:`load_environment`).
        database: Database name, overrides MYSQL_DATABASE.
        output_dir: Artifact directory, overrides BACKUP_DIR.

    Returns:
        BackupConfig: Validated configuration.

    Raises:
        ConfigError: If a required key is missing or the port is invalid.
    """
    host = _require(environment, HOST_KEY)
    user = _require(environment, USER_KEY)
    password = _require(environment, PASSWORD_KEY, strip=False)
    db_name = _require(environment, DATABASE_KEY, database)
    out = _require(environment, OUTPUT_DIR_KEY, str(output_dir) if output_dir else None)

    # The database name becomes part of the artifact filename and the dump argv
    if "/" in db_name or "\\" in db_name or db_name.startswith((".", "-")):
        raise ConfigError(
            ErrorKind.INVALID_FIELD,
            f"{DATABASE_KEY} cannot contain path separators or start with '.' or '-'",
            field=DATABASE_KEY,
        )

    raw_port = environment.get(PORT_KEY, "").strip() or str(DEFAULT_PORT)
    try:
        port = int(raw_port)
    except ValueError:
        raise ConfigError(
            ErrorKind.INVALID_FIELD, f"{PORT_KEY} must be an integer", field=PORT_KEY
        ) from None
    if not 0 < port < 65536:
        raise ConfigError(
            ErrorKind.INVALID_FIELD, f"{PORT_KEY} must be between 1 and 65535", field=PORT_KEY
        )

    return BackupConfig(
        host=host,
        port=port,
        user=user,
        password=password,
        database=db_name,
        output_dir=Path(out),
    )
