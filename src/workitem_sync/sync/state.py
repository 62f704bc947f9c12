"""Sync state persistence layer.

Stores the idempotency records (``StateTracker``) and recorded manual
edits (``ManualEditStore``) between runs, one JSON file per sync profile
(``sync_{profile_name}.json``) in the state directory.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Versioned payload** -- the file carries ``version`` so later formats
  can be migrated; unknown versions are rejected rather than guessed at.
* **Single writer** -- there is no locking; concurrent writers to the same
  profile are not supported.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from workitem_sync.errors import DirectoryCreateError, StateImportError
from workitem_sync.sync.edits import ManualEditStore
from workitem_sync.sync.identity import StateTracker

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class SyncSnapshot:
    """Everything restored from one state file."""

    profile: str
    tracker: StateTracker = field(default_factory=StateTracker)
    edits: ManualEditStore = field(default_factory=ManualEditStore)
    last_sync: str | None = None


class SyncStateStore:
    """Load and save sync state for named profiles.

    Args:
        state_dir: Directory where state files are stored (typically
            ``.workitem_sync/``).
    """

    def __init__(self, state_dir: Path | str) -> None:
        self._state_dir = Path(state_dir)

    def state_path(self, profile_name: str) -> Path:
        return self._state_dir / f"sync_{profile_name}.json"

    def load(self, profile_name: str) -> SyncSnapshot:
        """Load sync state from disk.

        Returns:
            A snapshot; empty when the file does not exist yet.

        Raises:
            StateImportError: The file exists but cannot be read back.
        """
        path = self.state_path(profile_name)
        if not path.exists():
            logger.debug("No state file for profile %s", profile_name)
            return SyncSnapshot(profile=profile_name)

        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise StateImportError(
                f"Cannot read state file {path}: {exc}",
                {"path": str(path)},
            ) from exc

        if not isinstance(data, dict):
            raise StateImportError(
                f"State file {path} does not hold a JSON object",
                {"path": str(path)},
            )
        version = data.get("version")
        if version != STATE_VERSION:
            raise StateImportError(
                f"Unsupported state version {version!r} in {path}",
                {"path": str(path), "version": version},
            )

        tracker = StateTracker()
        tracker.load_dict(data.get("operations") or {})
        edits = ManualEditStore.from_dict(data.get("manual_edits") or {})
        logger.debug(
            "Loaded state for %s: %d operations, %d manual edits",
            profile_name,
            len(tracker),
            len(edits),
        )
        return SyncSnapshot(
            profile=profile_name,
            tracker=tracker,
            edits=edits,
            last_sync=data.get("last_sync"),
        )

    def save(
        self,
        profile_name: str,
        tracker: StateTracker,
        edits: ManualEditStore | None = None,
    ) -> Path:
        """Persist *tracker* and *edits* atomically.

        Creates the state directory when missing and stamps ``last_sync``
        with the current UTC time.

        Returns:
            Path of the written state file.
        """
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DirectoryCreateError(
                str(self._state_dir), str(exc)
            ) from exc

        state = {
            "version": STATE_VERSION,
            "profile": profile_name,
            "last_sync": datetime.now(timezone.utc).isoformat(),
            "operations": tracker.to_dict(),
            "manual_edits": edits.to_dict() if edits is not None else {},
        }

        target = self.state_path(profile_name)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        return target
