"""Tests for the history client and startup backfill, against an httpx MockTransport."""
import asyncio

import httpx
import pytest

from voice_timeline.backfill import BackfillService, HistoryClient
from voice_timeline.errors import BackfillError, TimelineError

NOW = 1_000_000_000
RETENTION = 24 * 60 * 60 * 1000


def _client(handler):
    return HistoryClient(base_url="http://history.test/", timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_fetch_sends_since_and_returns_segments():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"segments": [{"userId": "u1"}]})

    segments = await _client(handler).fetch_segments(since=123)
    assert segments == [{"userId": "u1"}]
    assert seen["url"] == "http://history.test/history?since=123"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="down"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json={"rows": []}),
    ],
)
async def test_fetch_wraps_failures(response):
    with pytest.raises(BackfillError) as excinfo:
        await _client(lambda request: response).fetch_segments(since=0)
    assert isinstance(excinfo.value, TimelineError)


@pytest.mark.asyncio
async def test_fetch_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(BackfillError):
        await _client(handler).fetch_segments(since=0)


@pytest.mark.asyncio
async def test_run_merges_history(applier):
    def handler(request):
        assert request.url.params["since"] == str(NOW - RETENTION)
        return httpx.Response(
            200,
            json={"segments": [{"userId": "u1", "startedAtMs": NOW - 60_000, "endedAtMs": NOW - 30_000}]},
        )

    service = BackfillService(applier, client=_client(handler), retention_ms=RETENTION, clock=lambda: NOW)
    assert await service.run() == 1

    assert service.available is True
    assert applier.is_history_loading is False
    assert [(s.id, s.start, s.end) for s in applier.segments] == [("u1", NOW - 60_000, NOW - 30_000)]


@pytest.mark.asyncio
async def test_run_failure_leaves_store_untouched(applier, caplog):
    applier.apply_speaking({"type": "start", "user": {"id": "u1", "startedAt": NOW}}, now=NOW)
    snapshot = applier.segments
    service = BackfillService(
        applier, client=_client(lambda request: httpx.Response(500)), clock=lambda: NOW
    )

    assert await service.run() == 0
    assert service.available is False
    assert applier.is_history_loading is False
    assert applier.segments is snapshot
    assert "History backfill failed" in caplog.text


@pytest.mark.asyncio
async def test_run_disabled_without_base_url(applier):
    service = BackfillService(applier, client=HistoryClient(base_url=""), clock=lambda: NOW)
    assert await service.run() == 0
    assert service.available is False
    assert applier.is_history_loading is False


@pytest.mark.asyncio
async def test_cancelled_backfill_applies_nothing(applier):
    release = asyncio.Event()

    async def slow_handler(request):
        await release.wait()
        return httpx.Response(
            200, json={"segments": [{"userId": "u1", "startedAtMs": NOW - 60_000, "endedAtMs": NOW - 30_000}]}
        )

    service = BackfillService(applier, client=_client(slow_handler), clock=lambda: NOW)
    task = asyncio.create_task(service.run())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert applier.segments == ()
    assert service.available is None
