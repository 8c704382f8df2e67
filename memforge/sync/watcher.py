from __future__ import annotations

import enum
import logging
import signal
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from types import FrameType

from ..config import MemforgeConfig, load_config
from . import source
from .remote import BatchResult, RemoteSyncClient
from .retry_queue import RetryQueue
from .watermark import WatermarkStore

logger = logging.getLogger(__name__)

DB_CHECK_INTERVAL_S = 5.0
MIN_POLL_INTERVAL_S = 0.1


class SyncNotConfiguredError(RuntimeError):
    pass


class WatcherState(enum.Enum):
    IDLE = "idle"
    WAITING_FOR_DB = "waiting_for_db"
    CONNECTED_POLLING = "connected_polling"
    STOPPED = "stopped"


@dataclass
class CycleReport:
    observations: BatchResult | None = None
    summaries: BatchResult | None = None
    retried: int = 0
    error: str | None = None


class DatabaseWatcher:
    """Polls the claude-mem database and pushes new rows to the remote service.

    The watermark only moves past a batch once the client reports no transient
    failures for it, so an interrupted range is re-read on the next tick.
    """

    def __init__(
        self,
        remote: RemoteSyncClient,
        *,
        watermarks: WatermarkStore,
        db_path: Path,
        poll_interval_s: float | None = None,
        db_check_interval_s: float = DB_CHECK_INTERVAL_S,
        stop_event: threading.Event | None = None,
        connect: Callable[[Path], sqlite3.Connection] = source.connect_readonly,
    ) -> None:
        self.remote = remote
        self.watermarks = watermarks
        self.db_path = db_path
        if poll_interval_s is None:
            poll_interval_s = remote.get_config().poll_interval_ms / 1000.0
        self.poll_interval_s = max(MIN_POLL_INTERVAL_S, poll_interval_s)
        self.db_check_interval_s = db_check_interval_s
        self._stop = stop_event or threading.Event()
        self._connect = connect
        self.conn: sqlite3.Connection | None = None
        self.state = WatcherState.IDLE
        self.last_observation_id = 0
        self.last_summary_id = 0
        self._watermark_loaded = False

    def start(self) -> None:
        if self.state is not WatcherState.IDLE:
            logger.info("watcher already running")
            return
        if not self.remote.is_configured():
            raise SyncNotConfiguredError(
                "Sync not configured (need apiKey, serverUrl and syncEnabled: true)"
            )
        config = self.remote.get_config()
        logger.info(
            "memforge database watcher starting (server %s, poll %.1fs, db %s)",
            config.server_url,
            self.poll_interval_s,
            self.db_path,
        )
        try:
            if not self.wait_for_db():
                return
            self.open()
            self.run_loop()
        finally:
            self.shutdown()

    def wait_for_db(self) -> bool:
        if self.db_path.exists():
            return True
        self.state = WatcherState.WAITING_FOR_DB
        logger.info("database not found; waiting for claude-mem to create it")
        while not self._stop.wait(self.db_check_interval_s):
            if self.db_path.exists():
                logger.info("database found")
                return True
        return False

    def open(self) -> None:
        self.conn = self._connect(self.db_path)
        watermark = self.watermarks.load()
        if watermark is not None:
            self.last_observation_id = watermark.last_observation_id
            self.last_summary_id = watermark.last_summary_id
            logger.info(
                "restored watermark: observation %s, summary %s",
                self.last_observation_id,
                self.last_summary_id,
            )
        else:
            # First run: start at the current head, existing history is not backfilled.
            self.last_observation_id = source.max_id(self.conn, "observations")
            self.last_summary_id = source.max_id(self.conn, "session_summaries")
            self.watermarks.save(self.last_observation_id, self.last_summary_id)
            logger.info(
                "first run; starting from observation %s, summary %s",
                self.last_observation_id,
                self.last_summary_id,
            )
        self._watermark_loaded = True
        self.state = WatcherState.CONNECTED_POLLING

    def run_loop(self) -> None:
        logger.info("watching for new observations and summaries")
        while not self._stop.wait(self.poll_interval_s):
            self.poll_once()

    def poll_once(self) -> CycleReport:
        report = CycleReport()
        if self.conn is None:
            return report
        try:
            attempted: set[int] = set()
            report.observations = self._sync_observations(self.conn, attempted)
            report.summaries = self._sync_summaries(self.conn)
            pending = self.remote.pending_count()
            if pending:
                logger.info("retrying %s pending item(s)", pending)
                report.retried = self.remote.retry_pending(skip_ids=attempted)
                if report.retried:
                    logger.info("retried %s item(s)", report.retried)
        except Exception as exc:
            # A locked database or an unwritable state file only costs this tick.
            logger.exception("poll cycle failed", exc_info=exc)
            report.error = str(exc) or exc.__class__.__name__
        return report

    def _sync_observations(
        self, conn: sqlite3.Connection, attempted: set[int]
    ) -> BatchResult | None:
        rows = source.fetch_observations_after(conn, self.last_observation_id)
        if not rows:
            return None
        attempted.update(int(row["id"]) for row in rows)
        logger.info("found %s new observation(s)", len(rows))
        result = self.remote.sync_batch([source.observation_payload(row) for row in rows])
        logger.info(
            "observations: %s synced, %s failed, %s rejected",
            result.synced,
            result.failed,
            result.rejected,
        )
        if result.failed == 0:
            self.last_observation_id = max(self.last_observation_id, int(rows[-1]["id"]))
            self.watermarks.save(self.last_observation_id, self.last_summary_id)
        return result

    def _sync_summaries(self, conn: sqlite3.Connection) -> BatchResult | None:
        rows = source.fetch_summaries_after(conn, self.last_summary_id)
        if not rows:
            return None
        logger.info("found %s new summary(ies)", len(rows))
        result = self.remote.sync_summaries([source.summary_payload(row) for row in rows])
        logger.info("summaries: %s synced, %s failed", result.synced, result.failed)
        if result.failed == 0:
            self.last_summary_id = max(self.last_summary_id, int(rows[-1]["id"]))
            self.watermarks.save(self.last_observation_id, self.last_summary_id)
        return result

    def stop(self) -> None:
        self._stop.set()

    def install_signal_handlers(self) -> None:
        def _handle(signum: int, _frame: FrameType | None) -> None:
            logger.info("received %s; stopping watcher", signal.Signals(signum).name)
            self.stop()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

    def shutdown(self) -> None:
        self._stop.set()
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        if self._watermark_loaded:
            try:
                self.watermarks.save(self.last_observation_id, self.last_summary_id)
            except OSError as exc:
                logger.exception("watermark save failed on shutdown", exc_info=exc)
            else:
                logger.info(
                    "watermark saved: obs=%s, sum=%s",
                    self.last_observation_id,
                    self.last_summary_id,
                )
        pending = self.remote.pending_count()
        if pending:
            logger.warning("%s observation(s) pending sync", pending)
        self.state = WatcherState.STOPPED
        logger.info("watcher stopped")


def build_watcher(
    config: MemforgeConfig | None = None,
    *,
    stop_event: threading.Event | None = None,
) -> DatabaseWatcher:
    cfg = config or load_config()
    queue = RetryQueue()
    remote = RemoteSyncClient(queue, config=cfg)
    return DatabaseWatcher(
        remote,
        watermarks=WatermarkStore(),
        db_path=cfg.db_path,
        stop_event=stop_event,
    )
