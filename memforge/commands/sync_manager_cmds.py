from __future__ import annotations

import json

import typer
from rich import print

SETUP_HINT = "Sync not configured. Create ~/.memforge/config.json with apiKey and serverUrl"


def hook_response(message: str) -> None:
    """Emit the one-line JSON reply session hooks expect on stdout."""

    typer.echo(json.dumps({"continue": True, "suppressOutput": True, "message": message}))


def sync_start_cmd(
    *, resolve_config_path, read_config_file, load_config, watcher_status, spawn_watcher
) -> None:
    config_path = resolve_config_path()
    if config_path is None:
        hook_response(SETUP_HINT)
        return
    try:
        read_config_file(config_path)
    except (OSError, ValueError):
        hook_response("Failed to read config")
        return
    cfg = load_config(config_path)
    if not cfg.sync_enabled:
        hook_response("Sync disabled in config")
        return
    status = watcher_status()
    if status.running and status.info is not None:
        hook_response(f"Watcher already running (PID: {status.info.pid})")
        return
    try:
        pid = spawn_watcher()
    except OSError as exc:
        hook_response(f"Failed to start watcher: {exc}")
        return
    hook_response(f"Watcher started (PID: {pid})")


def sync_stop_cmd(*, stop_watcher) -> None:
    result = stop_watcher()
    if result.reason == "pidfile_missing":
        hook_response("Watcher not running (no PID file)")
        return
    if result.reason == "signal_failed":
        hook_response(f"Failed to stop watcher (PID: {result.pid})")
        return
    hook_response(f"Watcher stopped (PID: {result.pid})")


def sync_status_cmd(*, watcher_status, log_path, queue_factory, watermark_store) -> None:
    status = watcher_status()
    if status.info is None and not status.stale_cleared:
        print("Status: NOT RUNNING (no PID file)")
    elif status.info is None:
        print("Status: NOT RUNNING (unreadable PID file)")
        print("(Cleaned up stale PID file)")
    else:
        label = "RUNNING" if status.running else "STOPPED (stale PID)"
        print(f"Status: {label}")
        print(f"PID: {status.info.pid}")
        print(f"Started: {status.info.started_at}")
        print(f"Plugin: {status.info.plugin_root}")
        print(f"Log: {log_path}")
        if status.stale_cleared:
            print("(Cleaned up stale PID file)")
    queue = queue_factory()
    failed = len(queue.get_failed_items())
    print(f"Queue: {queue.size()} pending ({failed} dead-lettered)")
    watermark = watermark_store.load()
    if watermark is not None:
        print(
            f"Watermark: obs={watermark.last_observation_id}, "
            f"sum={watermark.last_summary_id} ({watermark.updated_at})"
        )
