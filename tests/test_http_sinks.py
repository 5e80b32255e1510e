"""Tests for the batching HTTP sinks (generic collector and Azure Monitor)."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
from typing import Callable, List

import httpx
import pytest

from mssql_mcp_audit.audit.models import AuditLogEntry, AuditResult
from mssql_mcp_audit.audit.sinks.azure_monitor import AzureMonitorSink, build_signature
from mssql_mcp_audit.audit.sinks.base import encode_batch
from mssql_mcp_audit.audit.sinks.http import HttpSink
from mssql_mcp_audit.errors import ConfigurationError

_KEY = base64.b64encode(b"super-secret-workspace-key").decode("ascii")


def _entry(tool: str = "read_data") -> AuditLogEntry:
    return AuditLogEntry(
        timestamp="2024-01-02T03:04:05.678Z",
        tool_name=tool,
        result=AuditResult(success=True, record_count=1),
    )


class _Recorder:
    """Mock transport handler that records requests and replays statuses."""

    def __init__(self, *statuses: int) -> None:
        self.requests: List[httpx.Request] = []
        self._statuses = list(statuses) or [200]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self._statuses.pop(0) if len(self._statuses) > 1 else self._statuses[0]
        return httpx.Response(status)

    def bodies(self) -> List[list]:
        return [json.loads(r.content) for r in self.requests]


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_encode_batch_keeps_order() -> None:
    body = json.loads(encode_batch([_entry("a"), _entry("b"), _entry("c")]))
    assert [item["toolName"] for item in body] == ["a", "b", "c"]


# ── HttpSink ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestHttpSink:
    async def test_batch_threshold_posts_one_array(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = HttpSink(
                "https://collector.example/audit",
                headers={"X-Api-Key": "k"},
                batch_size=2,
                flush_interval_ms=60_000,
                client=client,
            )
            sink.send(_entry("first"))
            assert recorder.requests == []
            sink.send(_entry("second"))
            await asyncio.sleep(0.05)
            await sink.close()

        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://collector.example/audit"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["X-Api-Key"] == "k"
        assert [item["toolName"] for item in recorder.bodies()[0]] == ["first", "second"]

    async def test_failed_batch_retried_exactly_once(self) -> None:
        recorder = _Recorder(500)
        async with _client(recorder) as client:
            sink = HttpSink("https://collector.example/audit", client=client)
            sink.send(_entry())
            await sink.flush()
            assert sink.buffered == 0
            await sink.close()

        assert len(recorder.requests) == 2
        assert recorder.requests[0].content == recorder.requests[1].content

    async def test_retry_success_delivers_batch(self) -> None:
        recorder = _Recorder(503, 200)
        async with _client(recorder) as client:
            sink = HttpSink("https://collector.example/audit", client=client)
            sink.send(_entry())
            await sink.flush()
            await sink.close()
        assert len(recorder.requests) == 2

    async def test_transport_error_is_contained(self) -> None:
        calls: List[httpx.Request] = []

        def boom(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with _client(boom) as client:
            sink = HttpSink("https://collector.example/audit", client=client)
            sink.send(_entry())
            await sink.flush()
            await sink.close()
        assert len(calls) == 2

    async def test_sends_during_flush_land_in_next_batch(self) -> None:
        gate = asyncio.Event()
        bodies: List[list] = []

        async def slow(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            await gate.wait()
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(slow)) as client:
            sink = HttpSink("https://collector.example/audit", client=client)
            sink.send(_entry("early"))
            in_flight = asyncio.create_task(sink.flush())
            await asyncio.sleep(0.01)
            assert sink.buffered == 0
            sink.send(_entry("late"))
            assert sink.buffered == 1
            gate.set()
            await in_flight
            await sink.close()

        assert [[item["toolName"] for item in body] for body in bodies] == [["early"], ["late"]]

    async def test_timer_flushes_partial_batch(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = HttpSink(
                "https://collector.example/audit",
                batch_size=100,
                flush_interval_ms=20,
                client=client,
            )
            sink.send(_entry())
            await asyncio.sleep(0.2)
            assert len(recorder.requests) == 1
            await sink.close()
        assert len(recorder.requests) == 1

    async def test_close_stops_interval_timer(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = HttpSink(
                "https://collector.example/audit",
                batch_size=100,
                flush_interval_ms=20,
                client=client,
            )
            sink.send(_entry())
            timer = sink._timer
            assert timer is not None and not timer.done()

            await sink.close()
            assert sink._timer is None
            assert timer.done()
            assert len(recorder.requests) == 1

            sink.send(_entry("after-close"))
            await asyncio.sleep(0.1)
            assert sink._timer is None
        assert len(recorder.requests) == 1

    async def test_put_method(self) -> None:
        recorder = _Recorder(204)
        async with _client(recorder) as client:
            sink = HttpSink("https://collector.example/audit", method="put", client=client)
            sink.send(_entry())
            await sink.close()
        assert recorder.requests[0].method == "PUT"

    async def test_close_flushes_remaining_entries(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = HttpSink("https://collector.example/audit", batch_size=10, client=client)
            for i in range(3):
                sink.send(_entry(f"t{i}"))
            await sink.close()
            assert sink.closed
            sink.send(_entry("after-close"))
            assert sink.buffered == 0
        assert len(recorder.bodies()[0]) == 3

    async def test_close_with_empty_buffer_sends_nothing(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = HttpSink("https://collector.example/audit", client=client)
            await sink.close()
            await sink.flush()
        assert recorder.requests == []

    async def test_injected_client_left_open(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = HttpSink("https://collector.example/audit", client=client)
            await sink.close()
            assert not client.is_closed


class TestHttpSinkWithoutLoop:
    def test_threshold_without_loop_keeps_entries_buffered(self) -> None:
        recorder = _Recorder(200)
        sink = HttpSink("https://collector.example/audit", batch_size=1, client=_client(recorder))
        sink.send(_entry())
        assert sink.buffered == 1
        asyncio.run(sink.close())
        assert len(recorder.requests) == 1


# ── AzureMonitorSink ────────────────────────────────────────────────────


class TestAzureSigning:
    def test_url(self) -> None:
        sink = AzureMonitorSink("ws-123", _KEY)
        assert sink.url == (
            "https://ws-123.ods.opinsights.azure.com/api/logs?api-version=2016-04-01"
        )
        asyncio.run(sink.close())

    def test_signature_matches_canonical_string(self) -> None:
        date = "Tue, 02 Jan 2024 03:04:05 GMT"
        key = base64.b64decode(_KEY)
        expected = base64.b64encode(
            hmac.new(
                key,
                f"POST\n42\napplication/json\nx-ms-date:{date}\n/api/logs".encode("utf-8"),
                hashlib.sha256,
            ).digest()
        ).decode("ascii")
        assert build_signature(key, 42, date) == expected

    def test_headers(self) -> None:
        sink = AzureMonitorSink("ws-123", _KEY, log_type="CustomAudit")
        date = "Tue, 02 Jan 2024 03:04:05 GMT"
        headers = sink.build_headers(10, date)
        asyncio.run(sink.close())
        assert headers["Content-Type"] == "application/json"
        assert headers["Log-Type"] == "CustomAudit"
        assert headers["x-ms-date"] == date
        signature = build_signature(base64.b64decode(_KEY), 10, date)
        assert headers["Authorization"] == f"SharedKey ws-123:{signature}"

    def test_default_log_type(self) -> None:
        sink = AzureMonitorSink("ws-123", _KEY)
        headers = sink.build_headers(1, "d")
        asyncio.run(sink.close())
        assert headers["Log-Type"] == "MSSQLMCPAudit"

    def test_invalid_key_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="ws-123"):
            AzureMonitorSink("ws-123", "not base64 !!")


@pytest.mark.asyncio
class TestAzureDelivery:
    async def test_signed_post(self) -> None:
        recorder = _Recorder(200)
        async with _client(recorder) as client:
            sink = AzureMonitorSink("ws-123", _KEY, client=client)
            sink.send(_entry("a"))
            sink.send(_entry("b"))
            await sink.close()

        assert len(recorder.requests) == 1
        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.host == "ws-123.ods.opinsights.azure.com"
        assert request.url.params["api-version"] == "2016-04-01"
        date = request.headers["x-ms-date"]
        signature = build_signature(base64.b64decode(_KEY), len(request.content), date)
        assert request.headers["Authorization"] == f"SharedKey ws-123:{signature}"
        assert [item["toolName"] for item in json.loads(request.content)] == ["a", "b"]

    async def test_rejection_is_not_retried(self) -> None:
        recorder = _Recorder(403)
        async with _client(recorder) as client:
            sink = AzureMonitorSink("ws-123", _KEY, client=client)
            sink.send(_entry())
            await sink.flush()
            await sink.close()
        assert len(recorder.requests) == 1

    async def test_transport_error_is_contained(self) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(boom) as client:
            sink = AzureMonitorSink("ws-123", _KEY, client=client)
            sink.send(_entry())
            await sink.flush()
            assert sink.buffered == 0
            await sink.close()
