from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any


def plugin_root() -> Path:
    """Directory the session hooks run from; the source checkout when unset."""

    override = os.environ.get("CLAUDE_PLUGIN_ROOT")
    if override:
        return Path(override).expanduser()
    return Path(__file__).resolve().parents[1]


def ensure_path(path: str | Path) -> Path:
    resolved = Path(path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def memforge_home() -> Path:
    return Path(os.environ.get("MEMFORGE_HOME", "~/.memforge")).expanduser()


def watermark_path() -> Path:
    return memforge_home() / ".sync-watermark.json"


def queue_path() -> Path:
    return memforge_home() / ".sync-queue.json"


def instance_lock_path() -> Path:
    return memforge_home() / "sync.lock"


def sync_pid_path() -> Path:
    pid_path = os.environ.get("MEMFORGE_SYNC_PID", "~/.claude-mem/memforge-sync.pid")
    return Path(pid_path).expanduser()


def sync_log_path() -> Path:
    log_path = os.environ.get("MEMFORGE_SYNC_LOG", "~/.claude-mem/memforge-sync.log")
    return Path(log_path).expanduser()


def write_json_atomic(path: Path, data: Any) -> None:
    """Replace ``path`` with ``data`` serialized as JSON.

    The payload goes to a sibling temp file first and is moved over the target with
    ``os.replace``, so readers only ever see the old or the new document.
    """

    target = ensure_path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
        os.replace(tmp_name, target)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
