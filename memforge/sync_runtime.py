from __future__ import annotations

import contextlib
import datetime as dt
import fcntl
import json
import os
import signal
import subprocess
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from .fs_paths import (
    ensure_path,
    instance_lock_path,
    plugin_root,
    sync_log_path,
    sync_pid_path,
    write_json_atomic,
)


@dataclass(frozen=True)
class PidInfo:
    pid: int
    started_at: str
    plugin_root: str

    def to_json(self) -> dict[str, object]:
        return {"pid": self.pid, "startedAt": self.started_at, "pluginRoot": self.plugin_root}


@dataclass(frozen=True)
class WatcherStatus:
    running: bool
    detail: str
    info: PidInfo | None = None
    stale_cleared: bool = False


@dataclass(frozen=True)
class StopResult:
    stopped: bool
    reason: str
    pid: int | None = None


class AlreadyRunningError(RuntimeError):
    pass


def _pid_running(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_pid_info(pid_path: Path | None = None) -> PidInfo | None:
    path = pid_path or sync_pid_path()
    try:
        raw = path.read_text()
    except FileNotFoundError:
        return None
    try:
        data = json.loads(raw)
        return PidInfo(
            pid=int(data["pid"]),
            started_at=str(data.get("startedAt") or ""),
            plugin_root=str(data.get("pluginRoot") or ""),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        return None


def _write_pid_info(pid_path: Path, info: PidInfo) -> None:
    write_json_atomic(pid_path, info.to_json())


def _clear_pid(pid_path: Path) -> None:
    try:
        pid_path.unlink()
    except FileNotFoundError:
        return


def watcher_status(pid_path: Path | None = None) -> WatcherStatus:
    """Probe the recorded watcher pid, removing the pid file if it is stale."""

    path = pid_path or sync_pid_path()
    if not path.exists():
        return WatcherStatus(False, "no PID file")
    info = read_pid_info(path)
    if info is None:
        _clear_pid(path)
        return WatcherStatus(False, "unreadable PID file", stale_cleared=True)
    if _pid_running(info.pid):
        return WatcherStatus(True, "running", info=info)
    _clear_pid(path)
    return WatcherStatus(False, "stale PID", info=info, stale_cleared=True)


def watcher_command() -> list[str]:
    return [sys.executable, "-m", "memforge", "watch"]


def spawn_watcher(pid_path: Path | None = None, log_path: Path | None = None) -> int:
    path = pid_path or sync_pid_path()
    log = ensure_path(log_path or sync_log_path())
    root = plugin_root()
    with log.open("ab") as handle:
        proc = subprocess.Popen(
            watcher_command(),
            stdin=subprocess.DEVNULL,
            stdout=handle,
            stderr=handle,
            cwd=str(root),
            start_new_session=True,
            env=os.environ.copy(),
        )
    pid = int(proc.pid)
    _write_pid_info(
        path,
        PidInfo(
            pid=pid,
            started_at=dt.datetime.now(dt.UTC).isoformat(),
            plugin_root=str(root),
        ),
    )
    return pid


def stop_watcher(pid_path: Path | None = None) -> StopResult:
    path = pid_path or sync_pid_path()
    info = read_pid_info(path)
    if info is None:
        _clear_pid(path)
        return StopResult(False, "pidfile_missing")
    try:
        if _pid_running(info.pid):
            try:
                os.kill(info.pid, signal.SIGTERM)
            except OSError:
                return StopResult(False, "signal_failed", pid=info.pid)
            return StopResult(True, "stopped", pid=info.pid)
        return StopResult(False, "pid_not_running", pid=info.pid)
    finally:
        _clear_pid(path)


@contextlib.contextmanager
def instance_lock(lock_path: Path | None = None) -> Iterator[None]:
    """Hold an exclusive advisory lock for the life of the watcher process.

    The kernel drops the lock when the process dies, so a crash never leaves it held.
    """

    path = ensure_path(lock_path or instance_lock_path())
    fd = os.open(str(path), os.O_CREAT | os.O_RDWR, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            raise AlreadyRunningError(f"another watcher holds {path}") from exc
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
