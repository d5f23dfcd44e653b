"""JSON file SnapshotStore adapter.

Snapshot files are single JSON objects mapping "<test identity>: <key>" to the
data captured for that key. Keys are written sorted so files diff cleanly.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import orjson

from query_snapshot.errors.errors import SnapshotStoreError
from query_snapshot.ports.snapshot_store import SnapshotRecord

logger = logging.getLogger(__name__)


class JsonSnapshotStore:
    def __init__(self, indent: bool = True) -> None:
        self._options = orjson.OPT_SORT_KEYS
        if indent:
            self._options |= orjson.OPT_INDENT_2

    def load(self, path: Path) -> SnapshotRecord:
        """Return the record at `path`; empty on a missing or corrupt file."""
        path = Path(path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            logger.debug(f"[query-snapshot] No snapshot at {path}, starting fresh")
            return {}
        except OSError as e:
            logger.warning(
                f"[query-snapshot] Could not read snapshot {path}: {e}",
                extra={"event": "snapshot_load_failed", "path": str(path)},
            )
            return {}

        try:
            return self.decode(raw, path=path)
        except (orjson.JSONDecodeError, SnapshotStoreError) as e:
            logger.warning(
                f"[query-snapshot] Ignoring unreadable snapshot {path}: {e}",
                extra={"event": "snapshot_load_failed", "path": str(path)},
            )
            return {}

    def decode(self, raw: bytes, *, path: Path | None = None) -> SnapshotRecord:
        data: Any = orjson.loads(raw)
        if not isinstance(data, dict):
            raise SnapshotStoreError(
                f"expected a JSON object, got {type(data).__name__}",
                path=str(path) if path else None,
                component="JsonSnapshotStore",
            )
        return data

    def encode(self, record: SnapshotRecord) -> bytes:
        return orjson.dumps(record, option=self._options)

    def save(self, path: Path, record: SnapshotRecord) -> None:
        path = Path(path)
        try:
            payload = self.encode(record)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)
        except (OSError, TypeError) as e:
            # orjson raises JSONEncodeError (a TypeError) for unserializable values
            logger.warning(
                f"[query-snapshot] Failed to write query snapshot {path}: {e}",
                extra={"event": "snapshot_save_failed", "path": str(path)},
            )
            return

        logger.info(
            f"[query-snapshot] Updated query snapshot {path}",
            extra={"event": "snapshot_saved", "path": str(path), "keys_total": len(record)},
        )

    async def save_async(self, path: Path, record: SnapshotRecord) -> None:
        """Fire-and-forget variant: run `save` off the event loop."""
        await asyncio.to_thread(self.save, path, dict(record))
