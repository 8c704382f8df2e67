from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import MemforgeConfig, load_config
from .http_client import (
    BATCH_TIMEOUT_S,
    PUSH_PATH,
    SINGLE_TIMEOUT_S,
    PushResponse,
    build_base_url,
    post_json,
)
from .retry_queue import RetryQueue

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Sync not configured or disabled"

Record = dict[str, Any]


@dataclass(frozen=True)
class SyncResult:
    success: bool
    error: str | None = None
    permanent: bool = False


@dataclass(frozen=True)
class BatchResult:
    synced: int
    failed: int
    # Records the server refused outright; they sit dead-lettered in the retry queue.
    rejected: int = 0


def _reported_count(payload: dict[str, Any] | None, key: str) -> int:
    if not payload:
        return 0
    counts = payload.get(key)
    if not isinstance(counts, dict):
        return 0
    total = 0
    for field in ("inserted", "updated"):
        value = counts.get(field)
        if isinstance(value, int) and not isinstance(value, bool):
            total += value
    return total


def _record_id(record: Record) -> int | None:
    try:
        return int(record["id"])
    except (KeyError, TypeError, ValueError):
        return None


class RemoteSyncClient:
    """Pushes observation and summary records to the remote memory service.

    Observations that cannot be delivered are handed to the ``RetryQueue``; summaries
    are not queued and rely on the caller keeping its watermark where it was.
    """

    def __init__(
        self,
        queue: RetryQueue,
        *,
        config: MemforgeConfig | None = None,
        config_loader: Callable[[], MemforgeConfig] = load_config,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.queue = queue
        self._config_loader = config_loader
        self._transport = transport
        self.config = config if config is not None else config_loader()

    def reload_config(self) -> MemforgeConfig:
        self.config = self._config_loader()
        return self.config

    def get_config(self) -> MemforgeConfig:
        return self.config

    def is_configured(self) -> bool:
        return self.config.has_credentials and self.config.sync_enabled

    @property
    def push_url(self) -> str:
        return f"{build_base_url(self.config.server_url)}{PUSH_PATH}"

    def _post(self, body: dict[str, Any], timeout_s: float) -> PushResponse:
        with httpx.Client(transport=self._transport) as client:
            return post_json(
                client,
                self.push_url,
                api_key=self.config.api_key,
                body=body,
                timeout_s=timeout_s,
            )

    def _push_single(self, record: Record) -> SyncResult:
        try:
            response = self._post({"observations": [record]}, SINGLE_TIMEOUT_S)
        except httpx.HTTPError as exc:
            return SyncResult(False, str(exc) or exc.__class__.__name__)
        if response.ok:
            return SyncResult(True)
        return SyncResult(False, response.error_detail(), permanent=response.permanent)

    def _mark_delivered(self, records: Sequence[Record]) -> None:
        for record in records:
            item_id = _record_id(record)
            if item_id is not None and self.queue.remove(item_id):
                logger.info("observation %s delivered; removed from retry queue", item_id)

    def sync_observation(self, record: Record) -> SyncResult:
        if not self.is_configured():
            return SyncResult(False, NOT_CONFIGURED)
        result = self._push_single(record)
        if result.success:
            self._mark_delivered([record])
            return result
        if result.permanent:
            logger.error(
                "observation %s rejected by server; dead-lettering (%s)",
                record.get("id"),
                result.error,
            )
        self.queue.add(record, dead_letter=result.permanent)
        return result

    def sync_batch(self, records: Sequence[Record]) -> BatchResult:
        total = len(records)
        if not self.is_configured():
            return BatchResult(synced=0, failed=total)
        if not records:
            return BatchResult(synced=0, failed=0)
        try:
            response = self._post({"observations": list(records)}, BATCH_TIMEOUT_S)
        except httpx.HTTPError as exc:
            # The watermark holds, so the next cycle re-reads this batch; that is not a retry.
            logger.warning("observation batch push failed; queueing %s record(s): %s", total, exc)
            for record in records:
                if _record_id(record) not in self.queue:
                    self.queue.add(record)
            return BatchResult(synced=0, failed=total)
        if not response.ok:
            logger.warning(
                "observation batch rejected (HTTP %s); retrying %s record(s) individually",
                response.status,
                total,
            )
            synced = 0
            rejected = 0
            for record in records:
                result = self.sync_observation(record)
                if result.success:
                    synced += 1
                elif result.permanent:
                    rejected += 1
            return BatchResult(synced=synced, failed=total - synced - rejected, rejected=rejected)
        self._mark_delivered(records)
        return BatchResult(
            synced=_reported_count(response.payload, "observations") or total, failed=0
        )

    def sync_summaries(self, records: Sequence[Record]) -> BatchResult:
        total = len(records)
        if not self.is_configured():
            return BatchResult(synced=0, failed=total)
        if not records:
            return BatchResult(synced=0, failed=0)
        try:
            response = self._post({"summaries": list(records)}, BATCH_TIMEOUT_S)
        except httpx.HTTPError as exc:
            logger.warning("summary batch push failed for %s record(s): %s", total, exc)
            return BatchResult(synced=0, failed=total)
        if not response.ok:
            level = logging.ERROR if response.permanent else logging.WARNING
            logger.log(level, "summary batch rejected: %s", response.error_detail())
            return BatchResult(synced=0, failed=total)
        return BatchResult(synced=_reported_count(response.payload, "summaries") or total, failed=0)

    def retry_pending(self, *, skip_ids: Collection[int] = ()) -> int:
        """Re-push queued observations, skipping ids already attempted this cycle."""

        if not self.is_configured():
            return 0
        synced = 0
        for item in self.queue.get_retry_items():
            if item.id in skip_ids:
                continue
            result = self._push_single(item.observation)
            if result.success:
                self.queue.remove(item.id)
                synced += 1
            elif result.permanent:
                logger.error(
                    "queued observation %s rejected by server; dead-lettering (%s)",
                    item.id,
                    result.error,
                )
                self.queue.add(item.observation, dead_letter=True)
            else:
                self.queue.increment_retry(item.id)
        return synced

    def pending_count(self) -> int:
        return self.queue.size()

    def clear_pending(self) -> None:
        self.queue.clear()
