"""
Polling file watcher.

Compares modification times of every file below the watched paths once per
poll interval and reports the paths that were created, modified or deleted.
Pair it with a Debouncer so that a burst of saves triggers one action.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Collection, Iterable, Optional, Union

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[set[Path]], Union[None, Awaitable[None]]]

IGNORED_DIRS = frozenset({".git", "__pycache__", ".pytest_cache", "node_modules", ".cache"})


def scan(paths: Iterable[Path], ignored_dirs: Collection[str] = IGNORED_DIRS) -> dict[Path, float]:
    """Map every file below `paths` to its modification time."""
    mtimes: dict[Path, float] = {}
    for root in paths:
        root = Path(root)
        if root.is_file():
            candidates: Iterable[Path] = [root]
        elif root.is_dir():
            candidates = root.rglob("*")
        else:
            continue
        for path in candidates:
            if any(part in ignored_dirs for part in path.relative_to(root).parts):
                continue
            try:
                if path.is_file():
                    mtimes[path] = path.stat().st_mtime
            except OSError:
                # Deleted between listing and stat
                continue
    return mtimes


def diff(before: dict[Path, float], after: dict[Path, float]) -> set[Path]:
    changed = {p for p, mtime in after.items() if before.get(p) != mtime}
    changed |= set(before) - set(after)
    return changed


class PollingWatcher:
    """
    Usage:
        watcher = PollingWatcher([Path("src")], on_change=debounced_rerun)
        await watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(
        self,
        paths: Iterable[Path],
        on_change: ChangeCallback,
        poll_interval_s: float = 0.1,
        ignored_dirs: Collection[str] = IGNORED_DIRS,
    ) -> None:
        if poll_interval_s <= 0:
            raise ValueError("poll_interval_s must be positive")
        self._paths = [Path(p) for p in paths]
        self._on_change = on_change
        self._poll_interval_s = poll_interval_s
        self._ignored_dirs = frozenset(ignored_dirs)
        self._mtimes: dict[Path, float] = {}
        self._task: Optional[asyncio.Task[Any]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._mtimes = scan(self._paths, self._ignored_dirs)
        logger.info(f"[watch] Watching {len(self._mtimes)} files")
        self._task = asyncio.create_task(self._run(), name="query-snapshot-watch")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def poll(self) -> set[Path]:
        """Scan once and notify about changes since the previous scan."""
        current = scan(self._paths, self._ignored_dirs)
        changed = diff(self._mtimes, current)
        self._mtimes = current
        if changed:
            logger.debug(f"[watch] {len(changed)} files changed")
            result = self._on_change(changed)
            if asyncio.iscoroutine(result):
                await result
        return changed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval_s)
            try:
                await self.poll()
            except Exception as e:
                logger.error(f"[watch] Change handler failed: {e}")
