"""Sinks — batch 的最终去向（HTTP、Console、Callback、InMemory、Null）。"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union, runtime_checkable

from tracelane_sdk.core.errors import TransportError

logger = logging.getLogger("tracelane_sdk.transport.sinks")

_MAX_ERROR_BODY = 128 * 1024  # 128KB


# ──────────────────────────────────────────────
# Sink Protocol
# ──────────────────────────────────────────────


@runtime_checkable
class Sink(Protocol):
    """Delivers one serialized batch. May raise; no retries at this layer."""

    async def send(self, batch: Dict[str, Any]) -> None:
        ...


# ──────────────────────────────────────────────
# HTTPSink
# ──────────────────────────────────────────────


class HTTPSink:
    """POSTs batches as JSON to the collector.

    Runs ``urllib.request`` in ``asyncio.to_thread``; non-2xx responses and
    network failures raise TransportError.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self.headers = headers or {}

    async def send(self, batch: Dict[str, Any]) -> None:
        payload = json.dumps(batch, default=str).encode("utf-8")
        await asyncio.to_thread(self._sync_send, payload)

    def _sync_send(self, payload: bytes) -> None:
        req = urllib.request.Request(
            self.endpoint,
            data=payload,
            headers={
                "Content-Type": "application/json",
                "User-Agent": f"tracelane-sdk-python/{_get_version()}",
                "Authorization": f"Bearer {self.api_key}",
                **self.headers,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            body = ""
            try:
                raw = e.read(_MAX_ERROR_BODY)
                body = raw.decode("utf-8", errors="replace")
                if len(body) > 512:
                    body = body[:512] + "..."
            except OSError:
                pass
            raise TransportError(e.code, body) from e
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(0, str(getattr(e, "reason", e))) from e


# ──────────────────────────────────────────────
# 本地 Sinks
# ──────────────────────────────────────────────


class NullSink:
    """Discards all batches (tracing disabled)."""

    async def send(self, batch: Dict[str, Any]) -> None:
        pass


class ConsoleSink:
    """Logs a one-line summary per trace/span."""

    async def send(self, batch: Dict[str, Any]) -> None:
        for trace in batch.get("traces", []):
            logger.info(
                "[Trace] %s | %s | %s spans | %s | %sms",
                trace.get("name"),
                trace.get("trace_id"),
                trace.get("span_count"),
                trace.get("status"),
                _fmt_ms(trace.get("duration_ms")),
            )
        for span in batch.get("spans", []):
            logger.info(
                "[Span] %s %s | %s | %sms | %s",
                span.get("kind", "").upper(),
                span.get("name"),
                span.get("status"),
                _fmt_ms(span.get("duration_ms")),
                span.get("attributes", {}),
            )


class CallbackSink:
    """Calls a user-provided function (sync or async) for each batch.

    Usage::

        batches = []
        sink = CallbackSink(batches.append)
    """

    def __init__(
        self, callback: Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
    ) -> None:
        self._callback = callback

    async def send(self, batch: Dict[str, Any]) -> None:
        result = self._callback(batch)
        if inspect.isawaitable(result):
            await result


class InMemorySink:
    """Records batches in memory. Used for deterministic testing.

    Parameters:
        fail_with: If set, every send raises this exception (batch not recorded).
    """

    def __init__(self, fail_with: Optional[BaseException] = None) -> None:
        self.batches: List[Dict[str, Any]] = []
        self.fail_with = fail_with
        self.attempts = 0

    async def send(self, batch: Dict[str, Any]) -> None:
        self.attempts += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.batches.append(batch)

    @property
    def spans(self) -> List[Dict[str, Any]]:
        return [span for batch in self.batches for span in batch.get("spans", [])]

    @property
    def traces(self) -> List[Dict[str, Any]]:
        return [trace for batch in self.batches for trace in batch.get("traces", [])]

    def clear(self) -> None:
        self.batches.clear()
        self.attempts = 0


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────


def _fmt_ms(value: Optional[float]) -> str:
    return f"{value:.1f}" if isinstance(value, (int, float)) else "-"


def _get_version() -> str:
    try:
        from tracelane_sdk import __version__
        return __version__
    except ImportError:
        return "unknown"
