"""
Debounce - run an action once a burst of calls has gone quiet.

Every call cancels the pending run and schedules a new one `quiet_period_s`
later with that call's arguments. Continuous activity therefore keeps
postponing the action; it only runs once the calls stop for a full quiet period.

Two flavours share that contract:
- Debouncer: timers on an asyncio event loop (loop.call_later)
- ThreadedDebouncer: threading.Timer, for callers without an event loop
  (file watcher threads, synchronous test hooks)

A pending run is dropped if the process exits before it fires.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, Optional, Union

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesce calls on an asyncio event loop."""

    def __init__(
        self,
        action: Callable[..., Any],
        quiet_period_s: float,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        if quiet_period_s < 0:
            raise ValueError("quiet_period_s must be non-negative")
        self._action = action
        self._quiet_period_s = quiet_period_s
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self._quiet_period_s, self._fire, args, kwargs)

    def _fire(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self._handle = None
        try:
            result = self._action(*args, **kwargs)
        except Exception:
            logger.exception("Debounced action failed")
            return

        # Coroutine actions run as a task on the same loop
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Debounced action failed", exc_info=task.exception())


class ThreadedDebouncer:
    """Coalesce calls with a threading.Timer."""

    def __init__(self, action: Callable[..., Any], quiet_period_s: float) -> None:
        if quiet_period_s < 0:
            raise ValueError("quiet_period_s must be non-negative")
        self._action = action
        self._quiet_period_s = quiet_period_s
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        timer = threading.Timer(self._quiet_period_s, self._fire, args=(args, kwargs))
        timer.daemon = True
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = timer
        timer.start()

    def _fire(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        with self._lock:
            # A newer call superseded this timer after it had already started firing
            if self._timer is None or self._timer is not threading.current_thread():
                return
            self._timer = None
        try:
            self._action(*args, **kwargs)
        except Exception:
            logger.exception("Debounced action failed")


def debounce(
    action: Callable[..., Any], quiet_period_s: float
) -> Union[Debouncer, ThreadedDebouncer]:
    """
    Wrap `action` so that it only runs after `quiet_period_s` without calls.

    Inside a running event loop the wrapper uses that loop's timers, elsewhere
    a timer thread.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return ThreadedDebouncer(action, quiet_period_s)
    return Debouncer(action, quiet_period_s, loop=loop)
