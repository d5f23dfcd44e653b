"""pytest plugin driving query snapshot sessions.

Each test file is one suite with one snapshot file. Tests opt in with
`@pytest.mark.query_snapshot` (or `@with_query_snapshot`); other tests always
fetch fresh data.

Registered through the `pytest11` entry point.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Generator, Iterable, Optional

import pytest

from query_snapshot import runtime
from query_snapshot.adapters.json_store import JsonSnapshotStore
from query_snapshot.adapters.paths import path_resolver
from query_snapshot.config.config_loader import ConfigLoader
from query_snapshot.config.configs import SnapshotConfig, is_update_enabled
from query_snapshot.core.gate import SnapshotGate
from query_snapshot.core.session import SessionManager, SessionState
from query_snapshot.errors.errors import SnapshotConfigurationError

logger = logging.getLogger(__name__)

MARKER = "query_snapshot"
PLUGIN_NAME = "query-snapshot-lifecycle"


def identity_for(item: Any) -> str:
    """Node id without the file part: "TestPage::test_renders[en]"."""
    return item.nodeid.split("::", 1)[-1]


class QuerySnapshotPlugin:
    """Translates pytest's run protocol into session lifecycle events."""

    def __init__(self, cfg: SnapshotConfig, *, force_update: bool = False) -> None:
        self.config = cfg
        self.manager = SessionManager(JsonSnapshotStore(indent=cfg.indent), path_resolver(cfg))
        self.gate = SnapshotGate(self.manager, force_update=force_update)
        # suite id -> node id of the last item of that file in the run order
        self._last_items: dict[str, str] = {}

    def track_items(self, items: Iterable[Any]) -> None:
        """Remember the last item of every file; its suite ends only after it."""
        self._last_items = {str(item.path): item.nodeid for item in items}

    def is_last_of_suite(self, item: Any, nextitem: Optional[Any]) -> bool:
        suite_id = str(item.path)
        if suite_id in self._last_items:
            return self._last_items[suite_id] == item.nodeid
        return nextitem is None or str(nextitem.path) != suite_id

    def before_test(self, item: Any) -> None:
        suite_id = str(item.path)
        current = self.manager.current
        if current is not None and current.suite_id != suite_id:
            self.manager.suite_suspended()
        if self.manager.state == SessionState.IDLE:
            self.manager.suite_started(suite_id)

        self.manager.spec_started(identity_for(item))
        if item.get_closest_marker(MARKER) is not None:
            self.manager.enable_snapshot_mode()

    def after_test(self, item: Any, nextitem: Optional[Any]) -> None:
        self.manager.spec_done()
        if self.is_last_of_suite(item, nextitem):
            self.manager.suite_done()
        elif nextitem is not None and str(nextitem.path) != str(item.path):
            # More tests of this file follow later in the run
            self.manager.suite_suspended()

    def finish(self) -> None:
        self.manager.close_all()

    def pytest_collection_finish(self, session: Any) -> None:
        self.track_items(session.items)

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_protocol(self, item: Any, nextitem: Optional[Any]) -> Generator[None, Any, None]:
        self.before_test(item)
        try:
            yield
        finally:
            self.after_test(item, nextitem)

    def pytest_sessionfinish(self, session: Any, exitstatus: int) -> None:
        self.finish()


def pytest_addoption(parser: Any) -> None:
    group = parser.getgroup("query-snapshot")
    group.addoption(
        "--update-query-snapshots",
        action="store_true",
        default=False,
        help="Always refetch query data and update snapshots that changed",
    )


def pytest_configure(config: Any) -> None:
    config.addinivalue_line(
        "markers", f"{MARKER}: read query data from the test file's query snapshot"
    )
    try:
        cfg = ConfigLoader(config.rootpath).load()
    except SnapshotConfigurationError as e:
        raise pytest.UsageError(str(e)) from e

    force_update = bool(config.getoption("update_query_snapshots")) or is_update_enabled(
        os.environ.get(cfg.update_env_var)
    )
    plugin = QuerySnapshotPlugin(cfg, force_update=force_update)
    config.pluginmanager.register(plugin, PLUGIN_NAME)
    runtime.install(plugin.gate, cfg)
    if force_update:
        logger.info("[query-snapshot] Forcing update of query snapshots")


def pytest_unconfigure(config: Any) -> None:
    plugin = config.pluginmanager.get_plugin(PLUGIN_NAME)
    if plugin is not None:
        config.pluginmanager.unregister(plugin, PLUGIN_NAME)
        if runtime.get_gate() is plugin.gate:
            runtime.uninstall()


@pytest.fixture
def snapshot_gate() -> SnapshotGate:
    gate = runtime.get_gate()
    if gate is None:
        pytest.skip("query snapshot plugin is not active")
    return gate


@pytest.fixture
def snapshot_session_manager(snapshot_gate: SnapshotGate) -> SessionManager:
    return snapshot_gate.manager
