"""Error taxonomy for workitem_sync.

Every error raised by the package derives from ``WorkItemSyncError`` and
carries an ``ErrorKind`` tag plus a structured ``context`` dict, so callers
can branch on ``error.kind`` instead of long ``isinstance`` chains:

- ``TERMINAL``         -- 4xx-class remote failure, never retried.
- ``RETRY_EXHAUSTED``  -- transient failure that survived the full retry
  budget.  Distinct from ``TERMINAL`` so callers can queue the work for a
  later run.
- ``FILESYSTEM``       -- directory creation or file write failed.
- ``CONFIGURATION``    -- missing or invalid settings.
- ``STATE``            -- persisted state could not be imported.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Classification tag attached to every package error."""

    TERMINAL = "terminal"
    RETRY_EXHAUSTED = "retry_exhausted"
    FILESYSTEM = "filesystem"
    CONFIGURATION = "configuration"
    STATE = "state"


class WorkItemSyncError(Exception):
    """Base class for all workitem_sync errors.

    Args:
        message: Human-readable description.
        context: Structured fields describing the failure.
    """

    kind: ErrorKind = ErrorKind.STATE
    code: str = "SYNC_ERROR"

    def __init__(
        self, message: str, context: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation of the error."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "kind": self.kind.value,
            "context": self.context,
        }


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(WorkItemSyncError):
    """Missing or invalid configuration value."""

    kind = ErrorKind.CONFIGURATION
    code = "CONFIG_ERROR"


# ---------------------------------------------------------------------------
# Remote calls
# ---------------------------------------------------------------------------


class RemoteError(WorkItemSyncError):
    """Base class for failures of calls against the remote tracker.

    Attributes:
        operation_type: Kind of remote call (``"REST"``, ``"GraphQL"``).
    """

    def __init__(
        self,
        message: str,
        operation_type: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message, {**(context or {}), "operation": operation_type}
        )
        self.operation_type = operation_type


class TerminalRemoteError(RemoteError):
    """Client-side (4xx) failure.  Retrying would not help."""

    kind = ErrorKind.TERMINAL
    code = "REMOTE_TERMINAL"

    def __init__(
        self,
        operation_type: str,
        status_code: int,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"{operation_type} operation failed with client error "
            f"{status_code}: {cause}",
            operation_type,
            {"status_code": status_code},
        )
        self.status_code = status_code
        self.__cause__ = cause


class RetryExhaustedError(RemoteError):
    """Transient failure that persisted through every retry attempt."""

    kind = ErrorKind.RETRY_EXHAUSTED
    code = "RETRY_EXHAUSTED"

    def __init__(
        self,
        operation_type: str,
        attempts: int,
        last_error: BaseException,
    ) -> None:
        super().__init__(
            f"{operation_type} operation failed after {attempts} "
            f"attempts. Last error: {last_error}",
            operation_type,
            {"attempts": attempts, "last_error": str(last_error)},
        )
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


class FileSystemError(WorkItemSyncError):
    """A local filesystem operation failed.

    Attributes:
        path: Path the operation targeted.
        operation: Short operation name (``"write"``, ``"mkdir"``).
    """

    kind = ErrorKind.FILESYSTEM
    code = "FILESYSTEM_ERROR"

    def __init__(
        self,
        message: str,
        path: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message, {"path": path, "operation": operation})
        self.path = path
        self.operation = operation


class FileWriteError(FileSystemError):
    code = "FILE_WRITE_ERROR"

    def __init__(self, path: str, reason: str | None = None) -> None:
        message = (
            f"Failed to write file {path}: {reason}"
            if reason
            else f"Failed to write file: {path}"
        )
        super().__init__(message, path, "write")


class DirectoryCreateError(FileSystemError):
    code = "DIRECTORY_CREATE_ERROR"

    def __init__(self, path: str, reason: str | None = None) -> None:
        message = (
            f"Failed to create directory {path}: {reason}"
            if reason
            else f"Failed to create directory: {path}"
        )
        super().__init__(message, path, "mkdir")


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class StateImportError(WorkItemSyncError):
    """Serialized tracker or edit state could not be parsed."""

    kind = ErrorKind.STATE
    code = "STATE_IMPORT_ERROR"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_sync_error(error: object) -> bool:
    """Return ``True`` if *error* is a ``WorkItemSyncError``."""
    return isinstance(error, WorkItemSyncError)


def get_error_kind(error: object) -> str:
    """Return the ``ErrorKind`` value of *error*, or ``"unknown"``."""
    if isinstance(error, WorkItemSyncError):
        return error.kind.value
    return "unknown"


def format_error(error: object) -> str:
    """Format *error* as ``[CODE] message (context-json)`` for logs."""
    if isinstance(error, WorkItemSyncError):
        context = (
            f" ({json.dumps(error.context, default=str)})"
            if error.context
            else ""
        )
        return f"[{error.code}] {error.message}{context}"
    if isinstance(error, BaseException):
        return f"[UNKNOWN_ERROR] {error}"
    return f"[NON_ERROR_RAISED] {error}"
