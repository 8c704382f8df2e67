from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any

OBSERVATIONS_AFTER_SQL = """
    SELECT o.id, o.type, o.title, o.subtitle, o.narrative, o.project, o.text,
           o.facts, o.concepts, o.files_read, o.files_modified,
           o.created_at, o.created_at_epoch, o.memory_session_id,
           o.prompt_number, o.discovery_tokens, s.id AS sdk_session_id
    FROM observations o
    LEFT JOIN sdk_sessions s ON o.memory_session_id = s.memory_session_id
    WHERE o.id > ?
    ORDER BY o.id ASC
"""

SUMMARIES_AFTER_SQL = """
    SELECT s.id, s.memory_session_id, s.project, s.request, s.investigated,
           s.learned, s.completed, s.next_steps, s.files_read, s.files_edited,
           s.notes, s.prompt_number, s.created_at, s.created_at_epoch,
           s.discovery_tokens, ss.id AS sdk_session_id
    FROM session_summaries s
    LEFT JOIN sdk_sessions ss ON s.memory_session_id = ss.memory_session_id
    WHERE s.id > ?
    ORDER BY s.id ASC
"""

EMPTY_ARRAY = "[]"
DEFAULT_SDK_SESSION_ID = 1


def connect_readonly(db_path: Path | str) -> sqlite3.Connection:
    """Open the claude-mem database without any ability to write to it."""

    path = Path(db_path).expanduser().resolve()
    conn = sqlite3.connect(f"{path.as_uri()}?mode=ro", uri=True)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA query_only = ON")
    return conn


def max_id(conn: sqlite3.Connection, table: str) -> int:
    if table not in {"observations", "session_summaries"}:
        raise ValueError(f"untracked table: {table}")
    row = conn.execute(f"SELECT MAX(id) AS max_id FROM {table}").fetchone()
    if row is None or row["max_id"] is None:
        return 0
    return int(row["max_id"])


def fetch_observations_after(conn: sqlite3.Connection, last_id: int) -> list[sqlite3.Row]:
    return list(conn.execute(OBSERVATIONS_AFTER_SQL, (last_id,)).fetchall())


def fetch_summaries_after(conn: sqlite3.Connection, last_id: int) -> list[sqlite3.Row]:
    return list(conn.execute(SUMMARIES_AFTER_SQL, (last_id,)).fetchall())


def _now_epoch() -> int:
    return int(time.time())


def observation_payload(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "sdk_session_id": row["sdk_session_id"] or DEFAULT_SDK_SESSION_ID,
        "type": row["type"],
        "title": row["title"],
        "subtitle": row["subtitle"],
        "narrative": row["narrative"],
        "project": row["project"],
        "text": row["text"],
        "facts": row["facts"] or EMPTY_ARRAY,
        "concepts": row["concepts"] or EMPTY_ARRAY,
        "files_read": row["files_read"] or EMPTY_ARRAY,
        "files_modified": row["files_modified"] or EMPTY_ARRAY,
        "created_at": row["created_at"],
        "created_at_epoch": row["created_at_epoch"] or _now_epoch(),
        "prompt_number": row["prompt_number"] or 0,
        "discovery_tokens": row["discovery_tokens"] or 0,
    }


def summary_payload(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "sdk_session_id": row["sdk_session_id"] or DEFAULT_SDK_SESSION_ID,
        "memory_session_id": row["memory_session_id"],
        "project": row["project"],
        "request": row["request"],
        "investigated": row["investigated"],
        "learned": row["learned"],
        "completed": row["completed"],
        "next_steps": row["next_steps"],
        "files_read": row["files_read"] or EMPTY_ARRAY,
        "files_edited": row["files_edited"] or EMPTY_ARRAY,
        "notes": row["notes"],
        "prompt_number": row["prompt_number"] or 0,
        "created_at": row["created_at"],
        "created_at_epoch": row["created_at_epoch"] or _now_epoch(),
        "discovery_tokens": row["discovery_tokens"] or 0,
    }
