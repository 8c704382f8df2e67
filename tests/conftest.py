from __future__ import annotations

import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from memforge import config as config_module

CLAUDE_MEM_SCHEMA = """
CREATE TABLE sdk_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_session_id TEXT UNIQUE
);
CREATE TABLE observations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_session_id TEXT,
    project TEXT,
    text TEXT,
    type TEXT,
    title TEXT,
    subtitle TEXT,
    narrative TEXT,
    facts TEXT,
    concepts TEXT,
    files_read TEXT,
    files_modified TEXT,
    prompt_number INTEGER,
    discovery_tokens INTEGER,
    created_at TEXT,
    created_at_epoch INTEGER
);
CREATE TABLE session_summaries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    memory_session_id TEXT,
    project TEXT,
    request TEXT,
    investigated TEXT,
    learned TEXT,
    completed TEXT,
    next_steps TEXT,
    files_read TEXT,
    files_edited TEXT,
    notes TEXT,
    prompt_number INTEGER,
    discovery_tokens INTEGER,
    created_at TEXT,
    created_at_epoch INTEGER
);
"""


@pytest.fixture(autouse=True)
def _isolate_memforge_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    home = tmp_path / "memforge-home"
    monkeypatch.setenv("MEMFORGE_HOME", str(home))
    monkeypatch.setenv("MEMFORGE_SYNC_PID", str(tmp_path / "run" / "memforge-sync.pid"))
    monkeypatch.setenv("MEMFORGE_SYNC_LOG", str(tmp_path / "run" / "memforge-sync.log"))
    for name in (
        "MEMFORGE_CONFIG",
        "MEMFORGE_DB",
        "MEMFORGE_SYNC_ENABLED",
        "MEMFORGE_POLL_INTERVAL_MS",
        "CLAUDE_MEM_API_KEY",
        "CLAUDE_MEM_REMOTE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        config_module, "CLAUDE_MEM_SETTINGS_PATH", tmp_path / "claude-mem" / "settings.json"
    )
    monkeypatch.setenv("CLAUDE_PLUGIN_ROOT", str(tmp_path))


@pytest.fixture
def claude_mem_db(tmp_path: Path) -> Path:
    db_path = tmp_path / "claude-mem.db"
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(CLAUDE_MEM_SCHEMA)
        conn.execute("INSERT INTO sdk_sessions(memory_session_id) VALUES ('mem-1')")
        conn.commit()
    finally:
        conn.close()
    return db_path


@pytest.fixture
def add_observations(claude_mem_db: Path) -> Callable[..., list[int]]:
    def _add(count: int, **fields: Any) -> list[int]:
        conn = sqlite3.connect(claude_mem_db)
        ids: list[int] = []
        try:
            for index in range(count):
                row = {
                    "memory_session_id": "mem-1",
                    "project": "demo",
                    "type": "discovery",
                    "title": f"Observation {index}",
                    "created_at": "2026-01-01T00:00:00Z",
                    "created_at_epoch": 1767225600,
                }
                row.update(fields)
                columns = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                cur = conn.execute(
                    f"INSERT INTO observations({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
                ids.append(int(cur.lastrowid))
            conn.commit()
        finally:
            conn.close()
        return ids

    return _add


@pytest.fixture
def add_summaries(claude_mem_db: Path) -> Callable[..., list[int]]:
    def _add(count: int, **fields: Any) -> list[int]:
        conn = sqlite3.connect(claude_mem_db)
        ids: list[int] = []
        try:
            for index in range(count):
                row = {
                    "memory_session_id": "mem-1",
                    "project": "demo",
                    "request": f"Request {index}",
                    "created_at": "2026-01-01T00:00:00Z",
                    "created_at_epoch": 1767225600,
                }
                row.update(fields)
                columns = ", ".join(row)
                placeholders = ", ".join("?" for _ in row)
                cur = conn.execute(
                    f"INSERT INTO session_summaries({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
                ids.append(int(cur.lastrowid))
            conn.commit()
        finally:
            conn.close()
        return ids

    return _add
