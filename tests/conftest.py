"""Shared fixtures for query snapshot tests."""

from pathlib import Path
from typing import Any, Callable, Iterable

import orjson
import pytest

from query_snapshot import runtime
from query_snapshot.adapters.json_store import JsonSnapshotStore
from query_snapshot.core.gate import SnapshotGate
from query_snapshot.core.session import SessionManager

pytest_plugins = ["pytester"]

SUITE_ID = "tests/test_pages.py"


@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    return tmp_path / "__snapshots__"


@pytest.fixture
def resolve_path(snapshot_dir: Path) -> Callable[[str], Path]:
    """Path resolver writing every suite's snapshot into the test's tmp dir."""

    def resolve(suite_id: str) -> Path:
        return snapshot_dir / f"{Path(suite_id).name}.query.json"

    return resolve


@pytest.fixture
def snapshot_file(resolve_path: Callable[[str], Path]) -> Path:
    return resolve_path(SUITE_ID)


@pytest.fixture
def write_snapshot(snapshot_file: Path) -> Callable[[dict[str, Any]], Path]:
    def write(record: dict[str, Any]) -> Path:
        snapshot_file.parent.mkdir(parents=True, exist_ok=True)
        snapshot_file.write_bytes(orjson.dumps(record))
        return snapshot_file

    return write


@pytest.fixture
def read_snapshot(snapshot_file: Path) -> Callable[[], dict[str, Any]]:
    def read() -> dict[str, Any]:
        return orjson.loads(snapshot_file.read_bytes())

    return read


@pytest.fixture
def store() -> JsonSnapshotStore:
    return JsonSnapshotStore()


@pytest.fixture
def manager(store: JsonSnapshotStore, resolve_path: Callable[[str], Path]) -> SessionManager:
    return SessionManager(store, resolve_path, name="test")


@pytest.fixture
def gate(manager: SessionManager) -> SnapshotGate:
    return SnapshotGate(manager, name="test")


@pytest.fixture
def in_snapshot_test(manager: SessionManager) -> Iterable[SessionManager]:
    """A suite with test T1 running in snapshot mode."""
    manager.suite_started(SUITE_ID)
    manager.spec_started("T1")
    manager.enable_snapshot_mode()
    yield manager


@pytest.fixture
def installed_gate(gate: SnapshotGate) -> Iterable[SnapshotGate]:
    """Install `gate` as the process default, restoring the previous one afterwards."""
    previous_gate, previous_config = runtime.get_gate(), runtime.get_config()
    runtime.install(gate)
    try:
        yield gate
    finally:
        runtime.uninstall()
        if previous_gate is not None:
            runtime.install(previous_gate, previous_config)


class Supplier:
    """Callable supplier that counts its calls."""

    def __init__(self, *values: Any, error: Exception | None = None) -> None:
        self._values = list(values)
        self._error = error
        self.calls = 0

    def __call__(self) -> Any:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return self._values.pop(0) if len(self._values) > 1 else self._values[0]


class AsyncSupplier(Supplier):
    async def __call__(self) -> Any:  # type: ignore[override]
        return super().__call__()


@pytest.fixture
def make_supplier() -> Callable[..., Supplier]:
    return Supplier


@pytest.fixture
def make_async_supplier() -> Callable[..., AsyncSupplier]:
    return AsyncSupplier
