"""
History backfill: one GET against the history collaborator at startup.

    GET {HISTORY_BASE_URL}/history?since=<epochMs>
    -> {"segments": [{userId|id, startedAtMs|startedAt, endedAtMs|endedAt, durationMs?, profile?}]}

HistoryClient wraps httpx failures in BackfillError. BackfillService applies the
response only after it has been fully read; a cancelled task or a failed request
leaves the store untouched.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from voice_timeline.config import get_settings
from voice_timeline.errors import BackfillError
from voice_timeline.timeline.applier import EventApplier
from voice_timeline.timeline.segments import unix_ms

logger = logging.getLogger(__name__)


class HistoryClient:
    """Thin async client for the history endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url if base_url is not None else settings.HISTORY_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HISTORY_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def fetch_segments(self, since: int) -> list[Any]:
        """Return the raw `segments` list. Raises BackfillError on any transport or shape failure."""
        if not self.enabled:
            raise BackfillError("History endpoint not configured")
        url = f"{self.base_url}/history"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url, params={"since": since})
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise BackfillError(
                f"History request failed with status {e.response.status_code}",
                {"url": url, "status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise BackfillError(f"History request failed: {e}", {"url": url}) from e
        except ValueError as e:
            raise BackfillError("History response is not JSON", {"url": url}) from e

        segments = data.get("segments") if isinstance(data, dict) else None
        if not isinstance(segments, list):
            raise BackfillError("History response has no segments list", {"url": url})
        return segments


class BackfillService:
    """
    Runs the startup backfill against an EventApplier.

    `available` is None until the first run finishes, then True/False.
    """

    def __init__(
        self,
        applier: EventApplier,
        client: HistoryClient | None = None,
        retention_ms: int | None = None,
        clock: Callable[[], int] = unix_ms,
    ) -> None:
        self._applier = applier
        self._client = client if client is not None else HistoryClient()
        self._retention_ms = retention_ms if retention_ms is not None else get_settings().RETENTION_WINDOW_MS
        self._clock = clock
        self.available: bool | None = None

    async def run(self) -> int:
        """Fetch and merge history. Returns the number of segments added; never raises BackfillError."""
        if not self._client.enabled:
            logger.info("History backfill disabled (HISTORY_BASE_URL not set)")
            self.available = False
            self._applier.is_history_loading = False
            return 0

        since = self._clock() - self._retention_ms
        try:
            segments = await self._client.fetch_segments(since)
        except BackfillError as e:
            logger.warning("History backfill failed: %s", e.message)
            self.available = False
            self._applier.is_history_loading = False
            return 0
        except asyncio.CancelledError:
            logger.info("History backfill cancelled")
            raise

        added = self._applier.apply_backfill(segments, now=self._clock())
        self.available = True
        self._applier.is_history_loading = False
        logger.info("History backfill: %d rows received, %d segments added", len(segments), added)
        return added
