"""Content identity and idempotency helpers.

Provides the digest functions used to decide whether anything really
changed, plus the guards built on top of them:

* ``hash_content`` / ``hash_object`` -- SHA-256 of raw text or of a
  canonical JSON serialization.
* ``write_idempotent`` -- file write that is a no-op when the target
  already holds the same content.
* ``StateTracker`` -- per-operation digest records used to skip work whose
  input has not changed since it last succeeded.
* Managed sections -- splice generated text between marker lines inside a
  human-owned file.

Key design choices:

* **Recursive canonicalization** -- ``hash_object`` sorts keys at every
  nesting level, so two semantically equal values always produce the same
  digest regardless of key order.
* **Atomic writes** -- ``write_idempotent`` writes to a temp file in the
  target directory then calls ``os.replace()`` so readers never see a
  partially written file.
* **Explicit trackers** -- there is no module-level tracker instance; every
  guard takes the ``StateTracker`` it should consult.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import stat
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel, ValidationError

from workitem_sync.errors import (
    DirectoryCreateError,
    FileSystemError,
    FileWriteError,
    StateImportError,
)
from workitem_sync.sync.models import BatchOutcome, OperationState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------


def hash_content(content: str) -> str:
    """Return the SHA-256 hex digest of *content* encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def canonicalize(value: Any) -> Any:
    """Convert *value* into plain JSON data with deterministic key order.

    Pydantic models are dumped in JSON mode, mappings have their keys
    sorted recursively, tuples and sets become lists (sets sorted by their
    canonical JSON), enums collapse to their value.  Anything else that is
    not JSON-native is stringified.
    """
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, dict):
        return {
            str(k): canonicalize(value[k])
            for k in sorted(value, key=str)
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def canonical_json(value: Any) -> str:
    """Serialize *value* to compact canonical JSON."""
    return json.dumps(
        canonicalize(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def hash_object(value: Any) -> str:
    """Return the digest of the canonical JSON form of *value*.

    Field order never changes the result, at any nesting depth.
    """
    return hash_content(canonical_json(value))


@dataclass(frozen=True)
class ContentWithHash:
    content: str
    hash: str


def create_content_with_hash(content: str) -> ContentWithHash:
    return ContentWithHash(content=content, hash=hash_content(content))


# ---------------------------------------------------------------------------
# File metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileMetadata:
    path: Path
    hash: str
    last_modified: datetime
    size: int


def get_file_metadata(
    path: Path | str, encoding: str = "utf-8"
) -> FileMetadata | None:
    """Return digest and stat info for *path*, or ``None`` if unreadable.

    A file that does not exist, cannot be read, or cannot be decoded with
    *encoding* has no metadata; callers treat it as "changed".
    """
    path = Path(path)
    try:
        if not path.is_file():
            return None
        content = path.read_bytes().decode(encoding)
        stats = path.stat()
    except (OSError, LookupError, UnicodeDecodeError) as exc:
        logger.debug("Cannot read metadata for %s: %s", path, exc)
        return None
    return FileMetadata(
        path=path,
        hash=hash_content(content),
        last_modified=datetime.fromtimestamp(
            stats.st_mtime, tz=timezone.utc
        ),
        size=stats.st_size,
    )


def has_file_changed(path: Path | str, expected_hash: str) -> bool:
    """Return ``True`` unless *path* exists with digest *expected_hash*."""
    metadata = get_file_metadata(path)
    if metadata is None:
        return True
    return metadata.hash != expected_hash


# ---------------------------------------------------------------------------
# Idempotent write
# ---------------------------------------------------------------------------


def write_idempotent(
    path: Path | str,
    content: str,
    *,
    create_backup: bool = False,
    ensure_directory: bool = True,
    encoding: str = "utf-8",
) -> bool:
    """Write *content* to *path* unless it already holds the same content.

    Args:
        path: Target file.
        content: Full text to write.
        create_backup: Copy the previous file to
            ``<path>.backup.<epoch-ms>`` before overwriting it.
        ensure_directory: Create missing parent directories.
        encoding: Text encoding for both the comparison read and the write.

    Returns:
        ``True`` if the file was written, ``False`` if it was already up
        to date.

    Raises:
        DirectoryCreateError: The parent directory could not be created.
        FileWriteError: The backup or the file itself could not be written.
    """
    path = Path(path)
    existing = get_file_metadata(path, encoding=encoding)
    new_hash = hash_content(content)

    if existing is not None and existing.hash == new_hash:
        logger.debug("Unchanged, skipping write: %s", path)
        return False

    directory = path.parent
    if ensure_directory and not directory.exists():
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DirectoryCreateError(str(directory), str(exc)) from exc

    if create_backup and path.exists():
        backup = path.with_name(
            f"{path.name}.backup.{int(time.time() * 1000)}"
        )
        try:
            backup.write_bytes(path.read_bytes())
        except OSError as exc:
            raise FileWriteError(str(backup), str(exc)) from exc
        logger.debug("Backed up %s to %s", path, backup)

    try:
        _atomic_write(path, content.encode(encoding))
    except FileSystemError:
        raise
    except (OSError, LookupError, UnicodeEncodeError) as exc:
        raise FileWriteError(str(path), str(exc)) from exc

    logger.info("Wrote %s", path)
    return True


def _target_mode(path: Path) -> int:
    """Mode the written file should end up with.

    An existing file keeps its permissions; a new one gets the usual
    umask-filtered 0666 instead of the 0600 ``mkstemp`` uses.
    """
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _atomic_write(path: Path, data: bytes) -> None:
    """Write *data* to a temp file next to *path*, then replace *path*."""
    if not path.parent.is_dir():
        raise FileWriteError(
            str(path), f"parent directory does not exist: {path.parent}"
        )
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp_path, _target_mode(path))
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# Operation state tracking
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateTracker:
    """In-memory map from operation id to its last successful digest.

    A tracker is owned by one caller for one run; persist it with
    ``export_states()`` / ``import_states()`` or ``SyncStateStore``.
    """

    def __init__(self) -> None:
        self._states: dict[str, OperationState] = {}

    def record_operation(
        self,
        operation_id: str,
        content: Any,
        metadata: dict[str, Any] | None = None,
    ) -> OperationState:
        """Store (overwriting) the digest of *content* for *operation_id*."""
        state = OperationState(
            id=operation_id,
            hash=hash_object(content),
            timestamp=_utc_now(),
            metadata=metadata or {},
        )
        self._states[operation_id] = state
        return state

    def has_changed(self, operation_id: str, content: Any) -> bool:
        """``True`` if no record exists or its digest differs."""
        state = self._states.get(operation_id)
        if state is None:
            return True
        return state.hash != hash_object(content)

    def get_state(self, operation_id: str) -> OperationState | None:
        return self._states.get(operation_id)

    def clear_state(self, operation_id: str) -> bool:
        """Drop the record for *operation_id*; return whether one existed."""
        return self._states.pop(operation_id, None) is not None

    def get_all_states(self) -> list[OperationState]:
        return list(self._states.values())

    def reset(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)

    # -- serialization --------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            op_id: state.model_dump(mode="json")
            for op_id, state in self._states.items()
        }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Replace all records with *data* (as produced by ``to_dict``)."""
        try:
            states = {
                op_id: OperationState.model_validate(raw)
                for op_id, raw in data.items()
            }
        except (ValidationError, AttributeError, TypeError) as exc:
            raise StateImportError(
                f"Failed to import states: {exc}"
            ) from exc
        self._states = states

    def export_states(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def import_states(self, states_json: str) -> None:
        """Replace all records with those in *states_json*.

        Raises:
            StateImportError: The JSON is malformed or not a mapping of
                operation states.
        """
        try:
            data = json.loads(states_json)
        except json.JSONDecodeError as exc:
            raise StateImportError(
                f"Failed to import states: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise StateImportError(
                "Failed to import states: expected a JSON object"
            )
        self.load_dict(data)


def should_skip_operation(
    operation_id: str, content: Any, tracker: StateTracker
) -> bool:
    """``True`` when *content* matches the last recorded run of the op."""
    return not tracker.has_changed(operation_id, content)


def record_operation_completion(
    operation_id: str,
    content: Any,
    tracker: StateTracker,
    metadata: dict[str, Any] | None = None,
) -> OperationState:
    """Record a successful run, stamping ``completed_at`` in the metadata."""
    return tracker.record_operation(
        operation_id,
        content,
        {**(metadata or {}), "completed_at": _utc_now()},
    )


@dataclass
class BatchOperation:
    """One guarded unit of work for ``execute_batch_idempotent``.

    Attributes:
        id: Stable operation id.
        data: Input whose digest decides whether the op must re-run.
        operation: Coroutine function called with ``data``.
    """

    id: str
    data: Any
    operation: Callable[[Any], Awaitable[Any]]


async def execute_batch_idempotent(
    operations: Iterable[BatchOperation], tracker: StateTracker
) -> BatchOutcome:
    """Run independent operations, skipping those whose input is unchanged.

    Operations run sequentially.  A failure is collected in the outcome and
    is *not* recorded in the tracker, so the next run retries it.
    """
    outcome = BatchOutcome()
    for op in operations:
        if should_skip_operation(op.id, op.data, tracker):
            outcome.skipped.append(op.id)
            continue
        try:
            await op.operation(op.data)
        except Exception as exc:
            logger.warning("Operation %s failed: %s", op.id, exc)
            outcome.errors[op.id] = str(exc)
            continue
        record_operation_completion(op.id, op.data, tracker)
        outcome.completed.append(op.id)

    logger.info(
        "Batch finished: %d completed, %d skipped, %d failed",
        len(outcome.completed),
        len(outcome.skipped),
        len(outcome.errors),
    )
    return outcome


# ---------------------------------------------------------------------------
# Managed sections
# ---------------------------------------------------------------------------


def extract_managed_sections(
    content: str, start_marker: str, end_marker: str
) -> list[str]:
    """Return the bodies of all ``start_marker`` ... ``end_marker`` blocks.

    A start marker seen while a block is already open closes the open block
    and starts a new one.  An unterminated trailing block is dropped.
    """
    sections: list[str] = []
    current: list[str] | None = None

    for line in content.split("\n"):
        if start_marker in line:
            if current is not None:
                sections.append("\n".join(current))
            current = []
        elif end_marker in line and current is not None:
            sections.append("\n".join(current))
            current = None
        elif current is not None:
            current.append(line)

    return sections


def replace_managed_section(
    original: str,
    new_section: str,
    start_marker: str,
    end_marker: str,
) -> str:
    """Replace the body of every managed block in *original*.

    Lines outside the markers are kept untouched.  When *original* has no
    managed block, one is appended after a blank line.
    """
    result: list[str] = []
    inside = False
    found = False

    for line in original.split("\n"):
        if start_marker in line:
            inside = True
            found = True
            result.append(line)
            result.append(new_section)
        elif end_marker in line and inside:
            inside = False
            result.append(line)
        elif not inside:
            result.append(line)

    if not found:
        result.extend(["", start_marker, new_section, end_marker])

    return "\n".join(result)
