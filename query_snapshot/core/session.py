"""
Snapshot session - per test file state.

A session lives from the start of a test file (suite) to its end. It tracks the
active test, whether that test opted into snapshot mode, the snapshot record as
loaded from disk, the changes staged during the run and the keys accessed.

At the end of the suite the record is written back, restricted to the keys
accessed during the run, so entries of removed tests are pruned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from query_snapshot.adapters.paths import snapshot_path_for
from query_snapshot.errors.errors import SessionStateError, SnapshotConfigurationError
from query_snapshot.ports.snapshot_store import SnapshotRecord, SnapshotStore

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


# Distinguishes "no cached value" from a cached JSON null
MISSING: Any = _Missing()


class SessionState(str, Enum):
    """State machine for SessionManager."""

    IDLE = "idle"
    SUITE_ACTIVE = "suite_active"
    TEST_ACTIVE = "test_active"


@dataclass
class Session:
    """Working copy of one suite's snapshot."""

    suite_id: str
    snapshot_path: Path
    test_identity: Optional[str] = None
    is_snapshot_mode: bool = False

    # Unset until the first snapshot lookup of the suite
    loaded_record: Optional[SnapshotRecord] = None
    staged_changes: Optional[SnapshotRecord] = None
    accessed_keys: Optional[set[str]] = None

    @property
    def is_loaded(self) -> bool:
        return self.loaded_record is not None

    def effective_key(self, key: str) -> str:
        return f"{self.test_identity}: {key}"

    def lookup(self, effective_key: str) -> Any:
        """Staged value first, then the loaded one; MISSING if neither exists."""
        if self.staged_changes and effective_key in self.staged_changes:
            return self.staged_changes[effective_key]
        if self.loaded_record and effective_key in self.loaded_record:
            return self.loaded_record[effective_key]
        return MISSING

    def mark_accessed(self, effective_key: str) -> None:
        self._require_loaded("mark_accessed")
        self.accessed_keys.add(effective_key)  # type: ignore[union-attr]

    def stage(self, effective_key: str, value: Any) -> None:
        self._require_loaded("stage")
        self.staged_changes[effective_key] = value  # type: ignore[index]

    def _require_loaded(self, event: str) -> None:
        if self.staged_changes is None or self.accessed_keys is None:
            raise SessionStateError(
                f"Snapshot of {self.suite_id} used before it was loaded",
                state="unloaded",
                event=event,
                component="Session",
            )

    def stale_keys(self) -> set[str]:
        """Loaded keys that were not accessed during this run."""
        if self.loaded_record is None:
            return set()
        return set(self.loaded_record) - (self.accessed_keys or set())

    def has_changed(self) -> bool:
        if self.loaded_record is None:
            return False
        return bool(self.staged_changes) or bool(self.stale_keys())

    def merged_record(self) -> SnapshotRecord:
        """Loaded record overlaid with staged changes, restricted to accessed keys."""
        merged = {**(self.loaded_record or {}), **(self.staged_changes or {})}
        return {key: merged[key] for key in sorted(self.accessed_keys or ()) if key in merged}


class SessionManager:
    """
    Drives the snapshot session from test lifecycle events.

    State Machine:
        [IDLE] --suite_started()--> [SUITE_ACTIVE] --spec_started()--> [TEST_ACTIVE]
           ^                          |      ^                              |
           +-------suite_done()-------+      +---------spec_done()----------+
           +-----suite_suspended()----+

    A suspended suite is resumed by the next suite_started() with its id. Tests
    of one file may be interleaved with other files; close_all() ends every
    suite still open or suspended when the run finishes.

    Usage:
        manager = SessionManager(JsonSnapshotStore())

        manager.suite_started("tests/test_page.py")
        manager.spec_started("test_renders")
        manager.enable_snapshot_mode()
        # ... gate lookups ...
        manager.spec_done()
        manager.suite_done()
    """

    def __init__(
        self,
        store: SnapshotStore,
        path_resolver: Optional[Callable[[str], Path]] = None,
        name: str = "query-snapshot",
    ) -> None:
        self._store = store
        self._path_resolver = path_resolver or snapshot_path_for
        self._name = name
        self._session: Optional[Session] = None
        self._suspended: dict[str, Session] = {}

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        if self._session.test_identity is None:
            return SessionState.SUITE_ACTIVE
        return SessionState.TEST_ACTIVE

    @property
    def current(self) -> Optional[Session]:
        """The active session, or None outside a suite."""
        return self._session

    # --- Lifecycle events ---

    def suite_started(self, suite_id: str | Path) -> Session:
        """Start a suite, resuming it if it was suspended earlier in the run."""
        if self._session is not None:
            raise SessionStateError(
                f"Suite {suite_id} started while {self._session.suite_id} is still active",
                state=self.state.value,
                event="suite_started",
                component="SessionManager",
            )

        suite_id = str(suite_id)
        parked = self._suspended.pop(suite_id, None)
        if parked is not None:
            self._session = parked
            logger.debug(f"[{self._name}] Suite resumed: {suite_id}")
            return parked

        self._session = Session(suite_id=suite_id, snapshot_path=self._path_resolver(suite_id))
        logger.debug(f"[{self._name}] Suite started: {suite_id}")
        return self._session

    def suite_suspended(self) -> None:
        """
        Park the active suite while tests of other suites run.

        Its loaded record, staged changes and accessed keys are kept, so the
        suite's snapshot is persisted once, for the whole run, by suite_done.
        """
        session = self._session
        if session is None or session.test_identity is not None:
            raise SessionStateError(
                "Only a suite between tests can be suspended",
                state=self.state.value,
                event="suite_suspended",
                component="SessionManager",
            )
        self._suspended[session.suite_id] = session
        self._session = None
        logger.debug(f"[{self._name}] Suite suspended: {session.suite_id}")

    @property
    def suspended_suites(self) -> list[str]:
        return list(self._suspended)

    def spec_started(self, test_identity: str) -> None:
        if self._session is None:
            raise SessionStateError(
                f"Test {test_identity} started outside a suite",
                state=self.state.value,
                event="spec_started",
                component="SessionManager",
            )

        # The snapshot itself is loaded lazily on first lookup
        self._session.test_identity = test_identity
        self._session.is_snapshot_mode = False
        logger.debug(f"[{self._name}] Test started: {test_identity}")

    def spec_done(self) -> None:
        if self._session is None or self._session.test_identity is None:
            logger.warning(f"[{self._name}] spec_done received in state: {self.state.value}")
            return

        # Loaded record, staged changes and accesses are shared by the whole suite
        logger.debug(f"[{self._name}] Test done: {self._session.test_identity}")
        self._session.is_snapshot_mode = False
        self._session.test_identity = None

    def suite_done(self, suite_id: str | Path | None = None) -> None:
        session = self._session
        if session is None:
            logger.warning(f"[{self._name}] suite_done received in state: {self.state.value}")
            return

        try:
            if session.has_changed():
                path = session.snapshot_path
                if suite_id is not None and str(suite_id) != session.suite_id:
                    path = self._path_resolver(str(suite_id))
                record = session.merged_record()
                logger.debug(
                    f"[{self._name}] Persisting {len(record)} keys "
                    f"({len(session.staged_changes or {})} changed, "
                    f"{len(session.stale_keys())} pruned)"
                )
                self._store.save(path, record)
        finally:
            self._session = None
            logger.debug(f"[{self._name}] Suite done: {session.suite_id}")

    def close_all(self) -> None:
        """End the active suite and every suspended one."""
        if self._session is not None and self._session.test_identity is not None:
            self.spec_done()
        if self._session is not None:
            self.suite_done()
        while self._suspended:
            _, self._session = self._suspended.popitem()
            self.suite_done()

    # --- Snapshot mode ---

    def enable_snapshot_mode(self) -> Session:
        """Opt the active test into snapshot mode."""
        session = self._session
        if session is None or session.test_identity is None:
            raise SnapshotConfigurationError(
                "You seem to be using query snapshots outside a test.",
                component="SessionManager",
                details={"state": self.state.value},
            )
        session.is_snapshot_mode = True
        return session

    def snapshot_session(self) -> Optional[Session]:
        """The session if the active test runs in snapshot mode, else None."""
        session = self._session
        if session is None or session.test_identity is None or not session.is_snapshot_mode:
            return None
        return session

    def ensure_loaded(self) -> Session:
        """Load the suite's snapshot on first use and return the session."""
        session = self._session
        if session is None:
            raise SnapshotConfigurationError(
                "You seem to be using query snapshots outside a test.",
                component="SessionManager",
            )
        if session.loaded_record is None:
            session.loaded_record = self._store.load(session.snapshot_path)
            session.staged_changes = {}
            session.accessed_keys = set()
            logger.debug(
                f"[{self._name}] Loaded {len(session.loaded_record)} keys "
                f"from {session.snapshot_path}"
            )
        return session
