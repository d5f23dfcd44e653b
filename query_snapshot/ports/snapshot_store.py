"""SnapshotStore Port Interface.

Contract: Load and persist the snapshot record of one test file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

SnapshotRecord = dict[str, Any]


class SnapshotStore(Protocol):
    def load(self, path: Path) -> SnapshotRecord: ...

    """
    Read the record stored at `path`. A missing or unreadable file yields an
    empty record; this never raises.
    """

    def save(self, path: Path, record: SnapshotRecord) -> None: ...

    """
    Write `record` to `path`, creating parent directories. Best effort: failures
    are logged and swallowed so persistence can never fail a test.
    """
