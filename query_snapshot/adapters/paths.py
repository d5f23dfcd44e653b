from __future__ import annotations

from pathlib import Path
from typing import Callable

from query_snapshot.config.configs import SnapshotConfig


def snapshot_path_for(
    suite_id: str | Path,
    *,
    dir_name: str = "__snapshots__",
    suffix: str = ".query.json",
) -> Path:
    """
    Snapshot file of a test file: tests/test_page.py -> tests/__snapshots__/test_page.py.query.json
    """
    test_path = Path(suite_id)
    return test_path.parent / dir_name / f"{test_path.name}{suffix}"


def path_resolver(cfg: SnapshotConfig) -> Callable[[str], Path]:
    def resolve(suite_id: str) -> Path:
        return snapshot_path_for(
            suite_id, dir_name=cfg.snapshot_dir_name, suffix=cfg.snapshot_suffix
        )

    return resolve
