"""
Error taxonomy for kvdoc, plus error logging utilities for the CLI.

Store-level failures carry the key they concern. Validation failures are
not exceptions: they are collected on the SaveResult returned by save().
Only the strict helpers raise RecordInvalid.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class KvdocError(Exception):
    """Base class for all kvdoc errors."""


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

class StoreError(KvdocError):
    """A single-key store operation failed."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class DuplicateKeyError(StoreError):
    """add() found the key already present."""


class ConflictError(StoreError):
    """The CAS token given to replace()/delete() is stale."""


class NotFoundError(StoreError):
    """The key is absent and the operation requires it."""


class StoreTimeoutError(StoreError):
    """A store round-trip exceeded its timeout."""


# ---------------------------------------------------------------------------
# Document lifecycle errors
# ---------------------------------------------------------------------------

class InvalidStateError(KvdocError):
    """The operation is not valid for the document's lifecycle state."""


class DocumentDestroyedError(InvalidStateError):
    pass


class NotPersistedError(InvalidStateError):
    pass


class ImmutableIdError(InvalidStateError):
    pass


class DocumentTypeMismatchError(KvdocError):
    """A stored value's discriminator names a different kind."""

    def __init__(self, expected: str, actual: str, key: Optional[str] = None):
        super().__init__(f"document type mismatch, {actual} != {expected}")
        self.expected = expected
        self.actual = actual
        self.key = key


class UnknownAttributeError(KvdocError, KeyError):
    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind} has no attribute {name!r}")
        self.kind = kind
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


class RecordInvalid(KvdocError):
    """Raised by the strict save helpers when validation fails."""

    def __init__(self, document, violations):
        self.document = document
        self.violations = list(violations)
        messages = ", ".join(v.full_message for v in self.violations)
        super().__init__(f"Record invalid: {messages}" if messages else "Record invalid")


# ---------------------------------------------------------------------------
# Error log
# ---------------------------------------------------------------------------

def _error_log_path() -> Path:
    """Resolve error log path, respecting KVDOC_STORE_PATH."""
    store = os.environ.get("KVDOC_STORE_PATH")
    if store:
        return Path(store) / "kvdoc-errors.log"
    return Path.home() / ".kvdoc" / "kvdoc-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}] {type(exc).__name__}")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # unwritable log must not mask the original error
    return log_path
