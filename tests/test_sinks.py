"""
测试 Sinks：HTTP 投递与错误映射、Console / Callback / InMemory。
"""

import io
import json
import logging
import urllib.error
import urllib.request

import pytest

from tracelane_sdk.core.errors import TransportError
from tracelane_sdk.transport.sinks import (
    CallbackSink,
    ConsoleSink,
    HTTPSink,
    InMemorySink,
    NullSink,
    Sink,
)

_BATCH = {
    "traces": [{"trace_id": "t1", "name": "checkout", "span_count": 1, "status": "ok"}],
    "spans": [{"span_id": "s1", "name": "db", "kind": "client", "status": "ok"}],
    "project": "p",
}


class _FakeResponse:
    def read(self):
        return b"{}"

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestHTTPSink:
    """HTTPSink 请求格式与错误映射。"""

    @pytest.mark.asyncio
    async def test_posts_json(self, monkeypatch):
        captured = {}

        def fake_urlopen(req, timeout):
            captured["req"] = req
            captured["timeout"] = timeout
            return _FakeResponse()

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        sink = HTTPSink("https://collector.test/v1/traces", "secret", timeout=3.0)
        await sink.send(_BATCH)

        req = captured["req"]
        assert req.full_url == "https://collector.test/v1/traces"
        assert req.get_method() == "POST"
        assert req.get_header("Authorization") == "Bearer secret"
        assert req.get_header("Content-type") == "application/json"
        assert req.get_header("User-agent").startswith("tracelane-sdk-python/")
        assert json.loads(req.data) == _BATCH
        assert captured["timeout"] == 3.0

    @pytest.mark.asyncio
    async def test_extra_headers(self, monkeypatch):
        captured = {}

        def fake_urlopen(req, timeout):
            captured["req"] = req
            return _FakeResponse()

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        await HTTPSink("https://c.test", "k", headers={"X-Team": "core"}).send(_BATCH)
        assert captured["req"].get_header("X-team") == "core"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, retryable", [(401, False), (500, True), (429, True)])
    async def test_http_error_mapped(self, monkeypatch, status, retryable):
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(
                req.full_url, status, "error", {}, io.BytesIO(b'{"error": "nope"}')
            )

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(TransportError) as exc_info:
            await HTTPSink("https://c.test", "k").send(_BATCH)

        err = exc_info.value
        assert err.status_code == status
        assert err.body_preview == '{"error": "nope"}'
        assert err.is_retryable is retryable

    @pytest.mark.asyncio
    async def test_long_error_body_truncated(self, monkeypatch):
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(req.full_url, 502, "bad", {}, io.BytesIO(b"x" * 2000))

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(TransportError) as exc_info:
            await HTTPSink("https://c.test", "k").send(_BATCH)
        assert exc_info.value.body_preview == "x" * 512 + "..."

    @pytest.mark.asyncio
    async def test_network_error_mapped(self, monkeypatch):
        def fake_urlopen(req, timeout):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(TransportError) as exc_info:
            await HTTPSink("https://c.test", "k").send(_BATCH)

        assert exc_info.value.status_code == 0
        assert "connection refused" in exc_info.value.body_preview
        assert exc_info.value.is_retryable is True


class TestLocalSinks:
    """本地 Sinks。"""

    def test_protocol(self):
        for sink in (NullSink(), ConsoleSink(), InMemorySink(), CallbackSink(lambda b: None)):
            assert isinstance(sink, Sink)

    @pytest.mark.asyncio
    async def test_callback_sync(self):
        received = []
        await CallbackSink(received.append).send(_BATCH)
        assert received == [_BATCH]

    @pytest.mark.asyncio
    async def test_callback_async(self):
        received = []

        async def handler(batch):
            received.append(batch)

        await CallbackSink(handler).send(_BATCH)
        assert received == [_BATCH]

    @pytest.mark.asyncio
    async def test_callback_error_propagates(self):
        def handler(batch):
            raise ValueError("rejected")

        with pytest.raises(ValueError):
            await CallbackSink(handler).send(_BATCH)

    @pytest.mark.asyncio
    async def test_console_logs_summary(self, caplog):
        caplog.set_level(logging.INFO, logger="tracelane_sdk.transport.sinks")
        await ConsoleSink().send(_BATCH)
        text = caplog.text
        assert "[Trace] checkout" in text
        assert "[Span] CLIENT db" in text

    @pytest.mark.asyncio
    async def test_in_memory(self):
        sink = InMemorySink()
        await sink.send(_BATCH)
        assert sink.traces == _BATCH["traces"]
        assert sink.spans == _BATCH["spans"]
        sink.clear()
        assert sink.batches == []
        assert sink.attempts == 0

    @pytest.mark.asyncio
    async def test_in_memory_failure(self):
        sink = InMemorySink(fail_with=TransportError(500))
        with pytest.raises(TransportError):
            await sink.send(_BATCH)
        assert sink.attempts == 1
        assert sink.batches == []
