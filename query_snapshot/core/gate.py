"""
Snapshot gate - decides between snapshot data and fresh data.

Tests that opt into snapshot mode read query data from the suite's snapshot
when it is there, so they run without the build that produced the data. On a
miss (or when updates are forced) the supplier runs and its result is staged
for the snapshot. If refreshing fails while a snapshot value exists, the stale
value is returned instead of failing the test.

`fetch` serves synchronous suppliers, `fetch_async` suppliers returning an
awaitable. The decision logic is shared; only the supplier call differs.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import orjson

from query_snapshot.core.session import MISSING, Session, SessionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotGate:
    def __init__(
        self,
        manager: SessionManager,
        *,
        force_update: bool = False,
        name: str = "query-snapshot",
    ) -> None:
        """
        Args:
            manager: Session manager holding the active suite's snapshot
            force_update: Always run the supplier, restaging on difference
            name: Name for logging purposes
        """
        self._manager = manager
        self._name = name
        self.force_update = force_update

    @property
    def manager(self) -> SessionManager:
        return self._manager

    def fetch(self, supplier: Callable[[], T], key: str) -> T:
        """
        Return the data for `key` from the snapshot, or from `supplier`.

        Outside snapshot mode this is a plain call of `supplier`.
        """
        session = self._manager.snapshot_session()
        if session is None:
            return supplier()

        effective_key, cached = self._begin(key)
        if cached is not MISSING and not self.force_update:
            return cached

        try:
            value = supplier()
        except Exception as e:
            return self._fallback(effective_key, cached, e)

        if inspect.isawaitable(value):
            # Close coroutines so they don't warn about never being awaited
            close = getattr(value, "close", None)
            if close is not None:
                close()
            raise TypeError(
                f"Supplier for {key!r} returned an awaitable; use fetch_async instead"
            )

        self._stage(session, effective_key, cached, value)
        return value

    async def fetch_async(self, supplier: Callable[[], Awaitable[T]], key: str) -> T:
        """Awaitable variant of `fetch` for suppliers returning an awaitable."""
        session = self._manager.snapshot_session()
        if session is None:
            return await supplier()

        effective_key, cached = self._begin(key)
        if cached is not MISSING and not self.force_update:
            return cached

        try:
            pending = supplier()
        except Exception as e:
            return self._fallback(effective_key, cached, e)
        if not inspect.isawaitable(pending):
            raise TypeError(
                f"Supplier for {key!r} returned {type(pending).__name__}, not an awaitable; "
                "use fetch instead"
            )
        try:
            value = await pending
        except Exception as e:
            return self._fallback(effective_key, cached, e)

        self._stage(session, effective_key, cached, value)
        return value

    # --- Shared decision steps ---

    def _begin(self, key: str) -> tuple[str, Any]:
        session = self._manager.ensure_loaded()
        effective_key = session.effective_key(key)
        # Hit or miss, the key is live and survives pruning
        session.mark_accessed(effective_key)
        return effective_key, session.lookup(effective_key)

    def _fallback(self, effective_key: str, cached: Any, error: Exception) -> Any:
        if cached is MISSING:
            raise error
        logger.warning(
            f"[{self._name}] could not refresh snapshot: {error}",
            extra={
                "event": "snapshot_refresh_failed",
                "key": effective_key,
                "error_type": type(error).__name__,
            },
        )
        return cached

    def _stage(self, session: Session, effective_key: str, cached: Any, value: Any) -> None:
        if cached is MISSING or json_differs(cached, value):
            session.stage(effective_key, value)
            logger.debug(f"[{self._name}] Staged snapshot change: {effective_key}")


def snapshot_key(*parts: Optional[str]) -> str:
    """Join non-empty parts into a snapshot key: snapshot_key("page", "/about") == "page /about"."""
    return " ".join(p for p in parts if p)


def json_differs(cached: Any, value: Any) -> bool:
    """
    Compare two values as they would be stored.

    True and 1, or 1 and 1.0, are equal in Python but not in the snapshot file.
    Values orjson cannot encode fall back to Python equality.
    """
    try:
        return orjson.dumps(cached, option=orjson.OPT_SORT_KEYS) != orjson.dumps(
            value, option=orjson.OPT_SORT_KEYS
        )
    except TypeError:
        return bool(cached != value)
