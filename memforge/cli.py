from __future__ import annotations

import typer

from .commands.sync_manager_cmds import sync_start_cmd, sync_status_cmd, sync_stop_cmd
from .commands.watch_cmds import once_cmd, queue_clear_cmd, queue_show_cmd, watch_cmd
from .config import load_config, read_config_file, resolve_config_path
from .fs_paths import sync_log_path
from .log import configure_logging
from .sync.retry_queue import RetryQueue
from .sync.watcher import build_watcher
from .sync.watermark import WatermarkStore
from .sync_runtime import instance_lock, spawn_watcher, stop_watcher, watcher_status

app = typer.Typer(help="memforge: sync claude-mem observations to a remote memory server")
queue_app = typer.Typer(help="Inspect the on-disk retry queue")
app.add_typer(queue_app, name="queue")


@app.command("start")
def start() -> None:
    """Start the background watcher (no-op if one is already running)."""

    sync_start_cmd(
        resolve_config_path=resolve_config_path,
        read_config_file=read_config_file,
        load_config=load_config,
        watcher_status=watcher_status,
        spawn_watcher=spawn_watcher,
    )


@app.command("stop")
def stop() -> None:
    """Stop the background watcher."""

    sync_stop_cmd(stop_watcher=stop_watcher)


@app.command("status")
def status() -> None:
    """Show watcher, retry queue and watermark status."""

    sync_status_cmd(
        watcher_status=watcher_status,
        log_path=sync_log_path(),
        queue_factory=RetryQueue,
        watermark_store=WatermarkStore(),
    )


@app.command("watch")
def watch() -> None:
    """Run the database watcher in the foreground."""

    watch_cmd(
        load_config=load_config,
        build_watcher=build_watcher,
        instance_lock=instance_lock,
        configure_logging=configure_logging,
    )


@app.command("once")
def once() -> None:
    """Run one poll cycle and exit."""

    configure_logging()
    once_cmd(load_config=load_config, build_watcher=build_watcher, instance_lock=instance_lock)


@queue_app.command("show")
def queue_show(limit: int = typer.Option(50, help="Max items to list per section")) -> None:
    """List pending and dead-lettered observations."""

    queue_show_cmd(RetryQueue(), limit=limit)


@queue_app.command("clear-failed")
def queue_clear_failed() -> None:
    """Drop dead-lettered observations."""

    queue_clear_cmd(RetryQueue(), failed_only=True)


@queue_app.command("clear")
def queue_clear() -> None:
    """Drop every queued observation."""

    queue_clear_cmd(RetryQueue(), failed_only=False)


if __name__ == "__main__":
    app()
