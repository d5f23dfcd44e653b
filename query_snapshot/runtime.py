"""
Process-wide wiring of the snapshot session.

The pytest plugin installs a SessionManager and SnapshotGate here when the test
run starts; application code and test helpers reach them through the functions
below. Anything can install its own pair instead (see `install`).
"""

from __future__ import annotations

import functools
import inspect
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

from query_snapshot.build.page_data import get_page_query_data, get_page_query_data_async
from query_snapshot.build.static_queries import StaticQuery, use_static_query
from query_snapshot.config.configs import SnapshotConfig
from query_snapshot.core.gate import SnapshotGate, snapshot_key
from query_snapshot.core.session import SessionManager
from query_snapshot.errors.errors import SnapshotConfigurationError

T = TypeVar("T")

_gate: Optional[SnapshotGate] = None
_config: SnapshotConfig = SnapshotConfig()


def install(gate: SnapshotGate, config: Optional[SnapshotConfig] = None) -> None:
    global _gate, _config
    _gate = gate
    if config is not None:
        _config = config


def uninstall() -> None:
    global _gate, _config
    _gate = None
    _config = SnapshotConfig()


def get_gate() -> Optional[SnapshotGate]:
    return _gate


def get_manager() -> Optional[SessionManager]:
    return _gate.manager if _gate is not None else None


def get_config() -> SnapshotConfig:
    return _config


def _require_manager() -> SessionManager:
    manager = get_manager()
    if manager is None:
        raise SnapshotConfigurationError(
            "You seem to be using query snapshots outside a test.",
            component="runtime",
        )
    return manager


def with_query_snapshot(test_fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Run a test in snapshot mode, e.g.

        @with_query_snapshot
        def test_renders():
            data = page_query("/about")
            ...

    The query data the test requires is stored in a snapshot next to the test
    file so that it is available even without running the build.
    """
    if inspect.iscoroutinefunction(test_fn):

        @functools.wraps(test_fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            _require_manager().enable_snapshot_mode()
            return await test_fn(*args, **kwargs)

        return async_wrapper

    @functools.wraps(test_fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        _require_manager().enable_snapshot_mode()
        return test_fn(*args, **kwargs)

    return wrapper


def snapshot_data(supplier: Callable[[], T], key: str) -> T:
    """
    Fetch data from the snapshot, if available, or otherwise from `supplier`.
    Without an installed gate this just calls `supplier`.
    """
    if _gate is None:
        return supplier()
    return _gate.fetch(supplier, key)


async def snapshot_data_async(supplier: Callable[[], Awaitable[T]], key: str) -> T:
    if _gate is None:
        return await supplier()
    return await _gate.fetch_async(supplier, key)


def set_update_snapshots(update: bool) -> None:
    """
    Toggle whether to force update of snapshots (note that snapshots are always
    updated if detected to be out-of-date).
    """
    env_var = _config.update_env_var
    if update:
        os.environ[env_var] = "update"
    else:
        os.environ.pop(env_var, None)
    if _gate is not None:
        _gate.force_update = update


def page_query(page_path: str, *, public_dir: Optional[Path] = None) -> Any:
    """Page query data of `page_path`, through the snapshot."""
    public_dir = public_dir or _config.public_dir
    return snapshot_data(
        lambda: get_page_query_data(page_path, public_dir), snapshot_key("page", page_path)
    )


async def page_query_async(page_path: str, *, public_dir: Optional[Path] = None) -> Any:
    public_dir = public_dir or _config.public_dir
    return await snapshot_data_async(
        lambda: get_page_query_data_async(page_path, public_dir),
        snapshot_key("page", page_path),
    )


def static_query(query: StaticQuery) -> Any:
    """Static query data of `query`, through the snapshot."""
    if not isinstance(query, StaticQuery):
        raise TypeError(f"static_query expects a StaticQuery object. Got: {query!r}")
    return snapshot_data(
        lambda: use_static_query(
            query, public_dir=_config.public_dir, index_path=_config.static_queries_file
        ),
        snapshot_key("static", query.component_path),
    )
