"""
Error types and error logging utilities for rackindex.

Recoverable conditions (stale rowids, deleted entities) are filtered out
quietly and never raised. Structural index failures are retried once via a
full rebuild before being surfaced. Configuration and embedding failures are
never recovered.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class RackIndexError(Exception):
    """Base exception for rackindex."""


class ConfigurationError(RackIndexError, ValueError):
    """Invalid chunking, index or search configuration."""


class IndexUnavailable(RackIndexError):
    """
    The vector index could not be read.

    Raised by the index primitive when the on-disk index is missing,
    unreadable, has the wrong dimension, or is out of step with the rowid
    map. The lifecycle manager treats it as an empty index and rebuilds.
    """


class IndexCorrupt(RackIndexError):
    """The index is still unusable after a rebuild attempt."""


class EmbeddingFailure(RackIndexError):
    """The embedding provider failed or timed out. Not retried."""


class EntityFetchFailure(RackIndexError):
    """
    An entity could not be loaded for a search result.

    Only ever raised inside the fetch loop; the result is dropped.
    """

    def __init__(self, entity_type: str, entity_id: str, reason: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        message = f"Failed to fetch {entity_type}:{entity_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class NotFound(RackIndexError):
    """Requested embedding or entity does not exist."""


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting RACKINDEX_STORE_PATH."""
    if store_path is not None:
        return Path(store_path) / "rackindex-errors.log"
    store = os.environ.get("RACKINDEX_STORE_PATH")
    if store:
        return Path(store) / "rackindex-errors.log"
    return Path.home() / ".rackindex" / "rackindex-errors.log"


def log_exception(
    exc: BaseException,
    context: str = "",
    store_path: Optional[Path] = None,
) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., operation name)
        store_path: Store directory; falls back to the environment/default

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
