from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

"""
Configuration for query snapshots and the watch CLI.
"""

DEFAULT_UPDATE_ENV_VAR = "UPDATE_QUERY_SNAPSHOTS"


class SnapshotConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    # Force-update toggle
    update_env_var: str = Field(
        default=DEFAULT_UPDATE_ENV_VAR,
        min_length=1,
        description="Environment variable forcing snapshot refresh",
    )

    # Snapshot file layout
    snapshot_dir_name: str = Field(
        default="__snapshots__", min_length=1, description="Directory next to the test file"
    )
    snapshot_suffix: str = Field(
        default=".query.json", min_length=1, description="Appended to the test file name"
    )
    indent: bool = Field(default=True, description="Pretty-print snapshot files")

    # Build output
    public_dir: Path = Field(default=Path("public"), description="Static site build output")
    static_queries_file: Path = Field(
        default=Path(".testing-static-queries.json"),
        description="Index of static query components written at build time",
    )

    # Watch mode
    watch_quiet_period_ms: int = Field(default=200, gt=0)
    watch_poll_interval_ms: int = Field(default=100, gt=0)

    @property
    def watch_quiet_period_s(self) -> float:
        return self.watch_quiet_period_ms / 1000.0

    @property
    def watch_poll_interval_s(self) -> float:
        return self.watch_poll_interval_ms / 1000.0


def is_update_enabled(raw: Optional[str]) -> bool:
    """
    Interpret the force-update environment value.

    Absent (or empty) and the literal "false" disable it; any other value enables it.
    """
    if not raw:
        return False
    return raw != "false"
