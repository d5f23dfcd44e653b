"""
Unit tests for SessionManager lifecycle and persistence decisions.
"""

import logging
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from query_snapshot.core.session import MISSING, Session, SessionManager, SessionState
from query_snapshot.errors.errors import SessionStateError, SnapshotConfigurationError

SUITE = "tests/test_pages.py"


@pytest.fixture
def mock_store() -> MagicMock:
    store = MagicMock()
    store.load.return_value = {}
    return store


@pytest.fixture
def mocked_manager(mock_store: MagicMock) -> SessionManager:
    return SessionManager(mock_store, lambda suite: Path("snaps") / f"{Path(suite).name}.json")


class TestLifecycle:
    def test_starts_idle(self, mocked_manager: SessionManager) -> None:
        assert mocked_manager.state == SessionState.IDLE
        assert mocked_manager.current is None

    def test_suite_started_allocates_empty_session(self, mocked_manager: SessionManager) -> None:
        session = mocked_manager.suite_started(SUITE)

        assert mocked_manager.state == SessionState.SUITE_ACTIVE
        assert session.suite_id == SUITE
        assert session.snapshot_path == Path("snaps/test_pages.py.json")
        assert session.loaded_record is None
        assert session.staged_changes is None
        assert session.accessed_keys is None
        assert session.is_snapshot_mode is False

    def test_spec_started_does_not_load(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        mocked_manager.suite_started(SUITE)
        mocked_manager.spec_started("T1")

        assert mocked_manager.state == SessionState.TEST_ACTIVE
        assert mocked_manager.current.test_identity == "T1"
        mock_store.load.assert_not_called()

    def test_spec_done_resets_snapshot_mode_only(self, mocked_manager: SessionManager) -> None:
        mocked_manager.suite_started(SUITE)
        mocked_manager.spec_started("T1")
        mocked_manager.enable_snapshot_mode()
        session = mocked_manager.ensure_loaded()
        session.stage("T1: q1", 1)
        session.mark_accessed("T1: q1")

        mocked_manager.spec_done()

        assert mocked_manager.state == SessionState.SUITE_ACTIVE
        assert session.is_snapshot_mode is False
        assert session.staged_changes == {"T1: q1": 1}
        assert session.accessed_keys == {"T1: q1"}
        assert session.loaded_record == {}

    def test_suite_done_tears_down(self, mocked_manager: SessionManager) -> None:
        mocked_manager.suite_started(SUITE)
        mocked_manager.suite_done(SUITE)

        assert mocked_manager.state == SessionState.IDLE
        assert mocked_manager.current is None

    def test_suite_started_twice_raises(self, mocked_manager: SessionManager) -> None:
        mocked_manager.suite_started(SUITE)

        with pytest.raises(SessionStateError) as exc:
            mocked_manager.suite_started("tests/test_other.py")

        assert exc.value.event == "suite_started"
        assert exc.value.state == "suite_active"

    def test_spec_started_while_idle_raises(self, mocked_manager: SessionManager) -> None:
        with pytest.raises(SessionStateError):
            mocked_manager.spec_started("T1")

    def test_teardown_while_idle_warns(
        self, mocked_manager: SessionManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="query_snapshot.core.session"):
            mocked_manager.spec_done()
            mocked_manager.suite_done()

        assert mocked_manager.state == SessionState.IDLE
        assert "spec_done received in state: idle" in caplog.text
        assert "suite_done received in state: idle" in caplog.text


class TestSnapshotMode:
    def test_enable_outside_test_raises(self, mocked_manager: SessionManager) -> None:
        with pytest.raises(SnapshotConfigurationError, match="outside a test"):
            mocked_manager.enable_snapshot_mode()

        mocked_manager.suite_started(SUITE)
        with pytest.raises(SnapshotConfigurationError, match="outside a test"):
            mocked_manager.enable_snapshot_mode()

    def test_snapshot_session_requires_opt_in(self, mocked_manager: SessionManager) -> None:
        mocked_manager.suite_started(SUITE)
        mocked_manager.spec_started("T1")
        assert mocked_manager.snapshot_session() is None

        mocked_manager.enable_snapshot_mode()
        assert mocked_manager.snapshot_session() is mocked_manager.current

    def test_ensure_loaded_loads_once(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        mock_store.load.return_value = {"T1: q1": {"x": 1}}
        mocked_manager.suite_started(SUITE)
        mocked_manager.spec_started("T1")
        mocked_manager.enable_snapshot_mode()

        first = mocked_manager.ensure_loaded()
        mocked_manager.spec_done()
        mocked_manager.spec_started("T2")
        second = mocked_manager.ensure_loaded()

        mock_store.load.assert_called_once_with(Path("snaps/test_pages.py.json"))
        assert first is second
        assert second.loaded_record == {"T1: q1": {"x": 1}}
        assert second.staged_changes == {}
        assert second.accessed_keys == set()


class TestPersistence:
    def _run(
        self,
        manager: SessionManager,
        store: MagicMock,
        loaded: dict[str, Any],
        body: Callable[[Session], None],
    ) -> None:
        store.load.return_value = loaded
        manager.suite_started(SUITE)
        manager.spec_started("T1")
        manager.enable_snapshot_mode()
        body(manager.ensure_loaded())
        manager.spec_done()
        manager.suite_done(SUITE)

    def test_no_write_when_never_loaded(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        mocked_manager.suite_started(SUITE)
        mocked_manager.spec_started("T1")
        mocked_manager.spec_done()
        mocked_manager.suite_done(SUITE)

        mock_store.save.assert_not_called()

    def test_no_write_when_unchanged(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        self._run(
            mocked_manager,
            mock_store,
            {"T1: q1": 1},
            lambda s: s.mark_accessed("T1: q1"),
        )

        mock_store.save.assert_not_called()

    def test_write_staged_changes(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        def body(s: Session) -> None:
            s.mark_accessed("T1: q1")
            s.stage("T1: q1", 2)

        self._run(mocked_manager, mock_store, {"T1: q1": 1}, body)

        mock_store.save.assert_called_once_with(Path("snaps/test_pages.py.json"), {"T1: q1": 2})

    def test_prunes_unaccessed_keys(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        self._run(
            mocked_manager,
            mock_store,
            {"T1: q1": 1, "T2: q2": 2},
            lambda s: s.mark_accessed("T1: q1"),
        )

        mock_store.save.assert_called_once_with(Path("snaps/test_pages.py.json"), {"T1: q1": 1})

    def test_prunes_when_new_key_hides_stale_one(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        # As many accessed keys as loaded ones, yet "T1: old" is stale
        def body(s: Session) -> None:
            s.mark_accessed("T1: q1")
            s.mark_accessed("T1: failed")

        self._run(mocked_manager, mock_store, {"T1: q1": 1, "T1: old": 0}, body)

        mock_store.save.assert_called_once_with(Path("snaps/test_pages.py.json"), {"T1: q1": 1})

    def test_save_error_does_not_leave_session_open(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        mock_store.save.side_effect = RuntimeError("disk on fire")

        with pytest.raises(RuntimeError):
            self._run(
                mocked_manager,
                mock_store,
                {"T1: q1": 1, "T2: q2": 2},
                lambda s: s.mark_accessed("T1: q1"),
            )

        assert mocked_manager.state == SessionState.IDLE


class TestSession:
    def test_effective_key(self) -> None:
        session = Session(suite_id=SUITE, snapshot_path=Path("x"), test_identity="T1")

        assert session.effective_key("q1") == "T1: q1"

    def test_lookup_prefers_staged(self) -> None:
        session = Session(
            suite_id=SUITE,
            snapshot_path=Path("x"),
            loaded_record={"k": 1, "n": None},
            staged_changes={"k": 2},
            accessed_keys=set(),
        )

        assert session.lookup("k") == 2
        assert session.lookup("n") is None
        assert session.lookup("absent") is MISSING

    def test_merged_record_restricted_to_accessed(self) -> None:
        session = Session(
            suite_id=SUITE,
            snapshot_path=Path("x"),
            loaded_record={"a": 1, "b": 2},
            staged_changes={"c": 3, "a": 10},
            accessed_keys={"a", "c", "gone"},
        )

        assert session.merged_record() == {"a": 10, "c": 3}


class TestSuspendedSuites:
    def _open_test(self, manager: SessionManager, suite: str, identity: str) -> Session:
        manager.suite_started(suite)
        manager.spec_started(identity)
        manager.enable_snapshot_mode()
        return manager.ensure_loaded()

    def test_resumed_suite_keeps_its_accesses(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        mock_store.load.return_value = {"T1: q": 1, "T2: q": 2}
        first = self._open_test(mocked_manager, SUITE, "T1")
        first.mark_accessed("T1: q")
        mocked_manager.spec_done()
        mocked_manager.suite_suspended()

        assert mocked_manager.state == SessionState.IDLE
        assert mocked_manager.suspended_suites == [SUITE]

        resumed = self._open_test(mocked_manager, SUITE, "T2")
        resumed.mark_accessed("T2: q")
        mocked_manager.spec_done()
        mocked_manager.suite_done()

        assert resumed is first
        mock_store.load.assert_called_once()
        mock_store.save.assert_not_called()
        assert mocked_manager.suspended_suites == []

    def test_suspend_during_test_raises(self, mocked_manager: SessionManager) -> None:
        mocked_manager.suite_started(SUITE)
        mocked_manager.spec_started("T1")

        with pytest.raises(SessionStateError) as exc:
            mocked_manager.suite_suspended()

        assert exc.value.event == "suite_suspended"

    def test_close_all_persists_suspended_suites(
        self, mocked_manager: SessionManager, mock_store: MagicMock
    ) -> None:
        mock_store.load.return_value = {"T1: q": 1, "T1: stale": 0}
        self._open_test(mocked_manager, SUITE, "T1").mark_accessed("T1: q")
        mocked_manager.spec_done()
        mocked_manager.suite_suspended()
        self._open_test(mocked_manager, "tests/test_other.py", "T1")

        mocked_manager.close_all()

        assert mocked_manager.state == SessionState.IDLE
        assert mocked_manager.suspended_suites == []
        mock_store.save.assert_any_call(Path("snaps/test_pages.py.json"), {"T1: q": 1})


def test_staging_before_load_raises() -> None:
    session = Session(suite_id=SUITE, snapshot_path=Path("x"), test_identity="T1")

    with pytest.raises(SessionStateError) as exc:
        session.stage("T1: q", 1)
    assert exc.value.event == "stage"

    with pytest.raises(SessionStateError):
        session.mark_accessed("T1: q")
