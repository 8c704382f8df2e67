from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

PUSH_PATH = "/api/sync/push"
SINGLE_TIMEOUT_S = 30.0
BATCH_TIMEOUT_S = 60.0

# Request timeouts and throttling are worth retrying; any other 4xx will never succeed.
RETRIABLE_CLIENT_STATUSES = frozenset({408, 425, 429})


def build_base_url(address: str) -> str:
    trimmed = address.strip().rstrip("/")
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme:
        return trimmed
    return f"https://{trimmed}"


def is_permanent_rejection(status: int) -> bool:
    return 400 <= status < 500 and status not in RETRIABLE_CLIENT_STATUSES


@dataclass(frozen=True)
class PushResponse:
    status: int
    payload: dict[str, Any] | None
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def permanent(self) -> bool:
        return is_permanent_rejection(self.status)

    def error_detail(self) -> str:
        return f"HTTP {self.status}: {self.text}"


def post_json(
    client: httpx.Client,
    url: str,
    *,
    api_key: str,
    body: dict[str, Any],
    timeout_s: float,
) -> PushResponse:
    """POST ``body`` and return the status with whatever JSON came back.

    Transport failures (connect errors, timeouts) propagate as ``httpx.HTTPError``.
    """

    response = client.post(
        url,
        content=json.dumps(body, ensure_ascii=False).encode("utf-8"),
        headers={
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-API-Key": api_key,
        },
        timeout=timeout_s,
    )
    text = response.text
    payload: dict[str, Any] | None = None
    if text:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            snippet = text[:240].strip()
            parsed = {"error": f"non_json_response: {snippet}" if snippet else "non_json_response"}
        if isinstance(parsed, dict):
            payload = parsed
        else:
            payload = {"error": f"unexpected_json_type: {type(parsed).__name__}"}
    return PushResponse(status=response.status_code, payload=payload, text=text)
