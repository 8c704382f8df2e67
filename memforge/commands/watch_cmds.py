from __future__ import annotations

import sqlite3

import typer
from rich import print
from rich.markup import escape

from memforge.sync.retry_queue import RetryQueue
from memforge.sync.watcher import SyncNotConfiguredError
from memforge.sync_runtime import AlreadyRunningError


def _require_sync_config(cfg) -> None:
    if not cfg.has_credentials:
        print("[red]Sync not configured (missing apiKey or serverUrl)[/red]")
        raise typer.Exit(code=1)
    if not cfg.sync_enabled:
        print("[yellow]Sync disabled in config (set syncEnabled: true)[/yellow]")
        raise typer.Exit(code=1)


def watch_cmd(*, load_config, build_watcher, instance_lock, configure_logging) -> None:
    """Run the database watcher in the foreground until SIGINT/SIGTERM."""

    configure_logging()
    cfg = load_config()
    _require_sync_config(cfg)
    try:
        with instance_lock():
            watcher = build_watcher(cfg)
            watcher.install_signal_handlers()
            watcher.start()
    except AlreadyRunningError as exc:
        print(f"[yellow]Watcher already running ({exc})[/yellow]")
        raise typer.Exit(code=1) from exc
    except SyncNotConfiguredError as exc:
        print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc
    except sqlite3.Error as exc:
        print(f"[red]Failed to open database {cfg.db_path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def once_cmd(*, load_config, build_watcher, instance_lock) -> None:
    """Run a single poll cycle and report what moved."""

    cfg = load_config()
    _require_sync_config(cfg)
    if not cfg.db_path.exists():
        print(f"[yellow]Database not found: {cfg.db_path}[/yellow]")
        raise typer.Exit(code=1)
    try:
        with instance_lock():
            watcher = build_watcher(cfg)
            watcher.open()
            try:
                report = watcher.poll_once()
            finally:
                watcher.shutdown()
    except AlreadyRunningError as exc:
        print("[yellow]Watcher is running; stop it before running a single cycle[/yellow]")
        raise typer.Exit(code=1) from exc
    if report.error:
        print(f"[red]Poll cycle failed: {report.error}[/red]")
        raise typer.Exit(code=1)
    obs = report.observations
    summaries = report.summaries
    print(
        f"Observations: {obs.synced if obs else 0} synced, {obs.failed if obs else 0} failed, "
        f"{obs.rejected if obs else 0} rejected"
    )
    print(
        f"Summaries: {summaries.synced if summaries else 0} synced, "
        f"{summaries.failed if summaries else 0} failed"
    )
    print(f"Retried: {report.retried}")
    print(
        f"Watermark: obs={watcher.last_observation_id}, sum={watcher.last_summary_id}"
    )


def queue_show_cmd(queue: RetryQueue, *, limit: int) -> None:
    """List queued observations, active first, then dead letters."""

    active = queue.get_retry_items()
    failed = queue.get_failed_items()
    if not active and not failed:
        print("Retry queue is empty")
        return
    print(
        f"Pending: {len(active)}  Dead-lettered: {len(failed)}  "
        f"(max retries {queue.max_retries})"
    )
    for item in active[:limit]:
        title = escape(str(item.observation.get("title") or ""))
        print(f"- {item.id} retries={item.retry_count} added={item.added_at} {title}")
    for item in failed[:limit]:
        title = escape(str(item.observation.get("title") or ""))
        print(
            f"- [red]{item.id}[/red] dead retries={item.retry_count} added={item.added_at} {title}"
        )


def queue_clear_cmd(queue: RetryQueue, *, failed_only: bool) -> None:
    if failed_only:
        dropped = len(queue.get_failed_items())
        queue.clear_failed()
        print(f"[green]Dropped {dropped} dead-lettered item(s)[/green]")
        return
    dropped = queue.size()
    queue.clear()
    print(f"[green]Dropped {dropped} queued item(s)[/green]")
