"""
Errors raised by episodic memory search, plus the CLI error log.
"""

import logging
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class EpisodicMemoryError(Exception):
    """Base class for search failures surfaced to callers."""


class ValidationError(EpisodicMemoryError, ValueError):
    """A search parameter is malformed. Raised before any retrieval."""

    def __init__(self, param: str, value: object, reason: str):
        self.param = param
        self.value = value
        super().__init__(f"Invalid {param}: {value!r}. {reason}")


class EmbeddingError(EpisodicMemoryError):
    """Embedding generation failed for a query or concept."""


class StoreError(EpisodicMemoryError):
    """The exchange store could not be opened or a query failed."""


ERROR_LOG_FILENAME = "episodic-memory-errors.log"


def _format_entry(exc: BaseException, context: str) -> str:
    header = datetime.now(timezone.utc).isoformat()
    if context:
        header += f" {context}"
    lines = ["=" * 60, f"[{header}]"]
    if isinstance(exc, ValidationError):
        lines.append(f"param={exc.param} value={exc.value!r}")
    lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return "\n" + "\n".join(lines)


def log_exception(exc: BaseException, context: str = "") -> Path:
    """
    Append the exception's traceback to the error log in the config directory.

    The CLI prints a one-line message; the full trace goes here. Failure to
    write the log is ignored.

    Returns:
        Path to the error log file
    """
    from .config import get_config_dir

    log_path = get_config_dir() / ERROR_LOG_FILENAME
    entry = _format_entry(exc, context)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(entry)
    except OSError:
        logger.debug("Cannot write error log %s", log_path, exc_info=True)
    return log_path
