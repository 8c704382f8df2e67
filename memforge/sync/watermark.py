from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass
from pathlib import Path

from ..fs_paths import watermark_path, write_json_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Watermark:
    last_observation_id: int
    last_summary_id: int
    updated_at: str

    def to_json(self) -> dict[str, object]:
        return {
            "lastObservationId": self.last_observation_id,
            "lastSummaryId": self.last_summary_id,
            "updatedAt": self.updated_at,
        }


class WatermarkStore:
    """Persists the last confirmed-synced ids for observations and summaries."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or watermark_path()

    def load(self) -> Watermark | None:
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("watermark read failed", extra={"path": str(self.path)}, exc_info=exc)
            return None
        try:
            data = json.loads(raw)
            return Watermark(
                last_observation_id=int(data["lastObservationId"]),
                last_summary_id=int(data["lastSummaryId"]),
                updated_at=str(data.get("updatedAt") or ""),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("watermark unreadable; ignoring", extra={"path": str(self.path)})
            return None

    def save(self, last_observation_id: int, last_summary_id: int) -> Watermark:
        watermark = Watermark(
            last_observation_id=last_observation_id,
            last_summary_id=last_summary_id,
            updated_at=dt.datetime.now(dt.UTC).isoformat(),
        )
        write_json_atomic(self.path, watermark.to_json())
        return watermark
