"""
Query snapshots for tests.

Tests that read data produced by a static site build (page queries, static
queries) can store that data in a snapshot next to the test file and keep
running from the snapshot without the build. Entries of tests that no longer
access them are pruned whenever the snapshot is written.

Components:
- SessionManager: per test file state, driven by test lifecycle events
- SnapshotGate: decides between snapshot data and fresh data
- JsonSnapshotStore: snapshot files on disk
- debounce: coalesce bursts of calls into one action

Usage:
    import pytest
    from query_snapshot import page_query

    @pytest.mark.query_snapshot
    def test_about_page():
        data = page_query("/about")
        assert data["site"]["title"] == "About"
"""

from query_snapshot.adapters.json_store import JsonSnapshotStore
from query_snapshot.build.static_queries import StaticQuery, graphql
from query_snapshot.config.configs import SnapshotConfig
from query_snapshot.core.debounce import Debouncer, ThreadedDebouncer, debounce
from query_snapshot.core.gate import SnapshotGate
from query_snapshot.core.session import Session, SessionManager, SessionState
from query_snapshot.errors.errors import (
    BuildOutputError,
    QuerySnapshotError,
    SessionStateError,
    SnapshotConfigurationError,
    SnapshotStoreError,
)
from query_snapshot.runtime import (
    page_query,
    page_query_async,
    set_update_snapshots,
    snapshot_data,
    snapshot_data_async,
    static_query,
    with_query_snapshot,
)

__all__ = [
    # Entry points for tests
    "with_query_snapshot",
    "snapshot_data",
    "snapshot_data_async",
    "page_query",
    "page_query_async",
    "static_query",
    "graphql",
    "set_update_snapshots",
    # Components
    "SessionManager",
    "Session",
    "SessionState",
    "SnapshotGate",
    "JsonSnapshotStore",
    "SnapshotConfig",
    "StaticQuery",
    "Debouncer",
    "ThreadedDebouncer",
    "debounce",
    # Errors
    "QuerySnapshotError",
    "SnapshotConfigurationError",
    "SessionStateError",
    "SnapshotStoreError",
    "BuildOutputError",
]
