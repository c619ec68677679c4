"""Text helpers shared by the executor, reporter and logs."""

from collections.abc import Iterable

REDACTED = "***"
MAX_ERROR_LENGTH = 2000


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every occurrence of each secret with ``***``.

    Args:
        text: Text that may contain secrets.
        secrets: Secret values. Empty values are ignored.

    Returns:
        str: Redacted text.
    """
    # Longest first so a secret containing another is masked whole
    for secret in sorted({s for s in secrets if s}, key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


def truncate(text: str, limit: int = MAX_ERROR_LENGTH) -> str:
    """Cut text to ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def clean_error(text: str, secrets: Iterable[str], limit: int = MAX_ERROR_LENGTH) -> str:
    """Redact then truncate diagnostic text for storage or display."""
    return truncate(redact(text, secrets).strip(), limit)
