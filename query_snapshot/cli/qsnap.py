"""qsnap CLI entrypoint.

Subcommands:
    inspect  Print the keys (and data) stored in a query snapshot file.
    watch    Re-run a command whenever watched files change, one run per burst
             of changes. `--update` forces snapshot updates in the next run.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional, Sequence, TextIO

import orjson
from pydantic import ValidationError

from query_snapshot.adapters.json_store import JsonSnapshotStore
from query_snapshot.config.config_loader import ConfigLoader
from query_snapshot.config.configs import SnapshotConfig
from query_snapshot.core.debounce import Debouncer
from query_snapshot.errors.errors import SnapshotConfigurationError, SnapshotStoreError
from query_snapshot.watch.watcher import IGNORED_DIRS, PollingWatcher

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """
    Return the top-level CLI argument parser.
    """
    p = argparse.ArgumentParser(prog="qsnap")
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    sub = p.add_subparsers(dest="command", required=True)

    # inspect
    ins = sub.add_parser("inspect", help="Show the contents of a query snapshot file")
    ins.add_argument("snapshot", type=Path, help="Snapshot file (*.query.json)")
    ins.add_argument("--keys-only", action="store_true", help="Print keys without data")

    # watch
    w = sub.add_parser("watch", help="Re-run a command when files change")
    w.add_argument("paths", type=Path, nargs="+", help="Files or directories to watch")
    w.add_argument("--quiet-ms", type=int, default=None, help="Quiet period before re-running")
    w.add_argument("--poll-ms", type=int, default=None, help="Polling interval")
    w.add_argument(
        "--update", action="store_true", help="Force query snapshot updates in the next run"
    )
    w.add_argument(
        "--run",
        dest="run_command",
        nargs=argparse.REMAINDER,
        required=True,
        metavar="COMMAND",
        help="Command to run, e.g. --run pytest -q",
    )
    return p


def run_inspect(snapshot: Path, keys_only: bool = False, out: TextIO = sys.stdout) -> int:
    """Print the snapshot file; returns the exit code."""
    if not snapshot.exists():
        print(f"No snapshot file at {snapshot}", file=sys.stderr)
        return 1
    store = JsonSnapshotStore()
    try:
        record = store.decode(snapshot.read_bytes(), path=snapshot)
    except (orjson.JSONDecodeError, SnapshotStoreError) as e:
        print(f"Not a query snapshot: {snapshot}: {e}", file=sys.stderr)
        return 1

    for key in sorted(record):
        if keys_only:
            print(key, file=out)
        else:
            data = orjson.dumps(record[key], option=orjson.OPT_SORT_KEYS).decode("utf-8")
            print(f"{key}\t{data}", file=out)
    return 0


def command_env(cfg: SnapshotConfig, update: bool) -> dict[str, str]:
    env = dict(os.environ)
    if update:
        env[cfg.update_env_var] = "update"
    return env


async def run_command(command: Sequence[str], env: dict[str, Any]) -> int:
    logger.info(f"[watch] Running: {' '.join(command)}")
    proc = await asyncio.create_subprocess_exec(*command, env=env)
    returncode = await proc.wait()
    logger.info(f"[watch] Command exited with {returncode}")
    return returncode


class CommandRunner:
    """
    Runs the watched command one process at a time.

    A trigger while the command runs queues exactly one more run, which starts
    when the current one exits. Forcing a snapshot update is one-shot: it
    applies to the next run only and is cleared when that run starts.
    """

    def __init__(self, command: Sequence[str], cfg: SnapshotConfig, *, update: bool = False) -> None:
        self._command = list(command)
        self._cfg = cfg
        self._update_next = update
        self._running = False
        self._queued = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def trigger(self, changed: Optional[set[Path]] = None) -> None:
        if self._running:
            self._queued = True
            logger.info("[watch] Command still running, queued one more run")
            return

        self._running = True
        try:
            while True:
                self._queued = False
                update, self._update_next = self._update_next, False
                await run_command(self._command, command_env(self._cfg, update))
                if not self._queued:
                    break
        finally:
            self._running = False


async def run_watch(
    paths: Sequence[Path],
    command: Sequence[str],
    cfg: SnapshotConfig,
    *,
    update: bool = False,
    stop_event: Optional[asyncio.Event] = None,
) -> int:
    """Watch `paths` and run `command` after every quiet burst of changes."""
    runner = CommandRunner(command, cfg, update=update)
    rerun = Debouncer(runner.trigger, cfg.watch_quiet_period_s)
    # Snapshot files written by the command must not trigger another run
    watcher = PollingWatcher(
        paths,
        on_change=rerun,
        poll_interval_s=cfg.watch_poll_interval_s,
        ignored_dirs=IGNORED_DIRS | {cfg.snapshot_dir_name},
    )

    stop_event = stop_event or asyncio.Event()
    await watcher.start()
    try:
        await stop_event.wait()
    finally:
        await watcher.stop()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    if args.command == "inspect":
        return run_inspect(args.snapshot, keys_only=args.keys_only)

    if args.command == "watch":
        if not args.run_command:
            parser.error("watch requires a command after --run")
        try:
            cfg = ConfigLoader(Path.cwd()).load()
        except SnapshotConfigurationError as e:
            print(str(e), file=sys.stderr)
            return 2
        overrides: dict[str, Any] = {}
        if args.quiet_ms is not None:
            overrides["watch_quiet_period_ms"] = args.quiet_ms
        if args.poll_ms is not None:
            overrides["watch_poll_interval_ms"] = args.poll_ms
        if overrides:
            try:
                cfg = SnapshotConfig(**{**cfg.model_dump(), **overrides})
            except ValidationError as e:
                parser.error(f"invalid watch timing: {e.errors()[0]['msg']}")
        try:
            return asyncio.run(run_watch(args.paths, args.run_command, cfg, update=args.update))
        except KeyboardInterrupt:
            return 0

    parser.error(f"unknown command {args.command!r}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
