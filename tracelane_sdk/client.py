"""
TraceClient — SDK 的统一入口。

职责:
- 采样决策 → 创建真实或 NoOp 的 Trace / Span
- 通过 ContextManager 标记 active trace / span
- 接收 finish() 后的 payload 并交给 BatchProcessor
- flush / shutdown 生命周期

Usage::

    client = TraceClient(api_key="...", project="checkout")

    async with client.trace("handle-order") as trace:
        async with client.span("db.query", kind=SpanKind.CLIENT) as span:
            span.set_attribute("db.table", "orders")

    await client.shutdown()
"""

from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, TypeVar, Union

from tracelane_sdk.core.config import ClientConfig
from tracelane_sdk.core.ids import generate_trace_id
from tracelane_sdk.core.sampler import Sampler
from tracelane_sdk.core.types import SpanKind, SpanStatus
from tracelane_sdk.tracing.context import ContextManager, get_context_manager
from tracelane_sdk.tracing.span import NoOpSpan, Span
from tracelane_sdk.tracing.trace import NoOpTrace, Trace
from tracelane_sdk.transport.batch import Batch, BatchProcessor, TransportStats
from tracelane_sdk.transport.sinks import HTTPSink, Sink, _get_version
from tracelane_sdk.utils.logger import setup_logging

logger = logging.getLogger("tracelane_sdk.client")

T = TypeVar("T")
MaybeAwaitable = Union[T, Awaitable[T]]

SDK_NAME = "tracelane-sdk-python"


class TraceClient:
    """Creates traces/spans and ships finished ones to the collector.

    Parameters:
        config: Base configuration (defaults to ``ClientConfig()``).
        sink: Batch destination. Defaults to an ``HTTPSink`` built from
            ``config.endpoint`` / ``config.api_key``; when a custom sink is
            given the API key becomes optional.
        sampler: Defaults to ``Sampler(config.sampling)``.
        context_manager: Defaults to the process-wide ContextManager.
        **overrides: Individual ``ClientConfig`` fields.

    Raises:
        ConfigurationError: Missing API key or invalid batching/sampling values.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        sink: Optional[Sink] = None,
        sampler: Optional[Sampler] = None,
        context_manager: Optional[ContextManager] = None,
        **overrides: Any,
    ) -> None:
        cfg = config or ClientConfig()
        if overrides:
            cfg = cfg.with_overrides(**overrides)
        cfg.validate(require_api_key=sink is None and cfg.enabled)
        self._config = cfg

        if cfg.debug:
            setup_logging(log_file=cfg.log_file, debug=True)

        self._sink: Sink = sink or HTTPSink(cfg.endpoint, cfg.api_key, timeout=cfg.timeout)
        self._sampler = sampler or Sampler(cfg.sampling)
        self._context = context_manager or get_context_manager()
        self._processor = BatchProcessor(
            self._sink,
            batch_size=cfg.batch_size,
            flush_interval=cfg.flush_interval,
            max_queue_size=cfg.max_queue_size,
            metadata={
                "project": cfg.project,
                "environment": cfg.environment,
                "sdk": {"name": SDK_NAME, "version": _get_version()},
            },
        )
        self._shutdown = False

        logger.info(
            "TraceClient ready | project=%s env=%s enabled=%s sample_rate=%s",
            cfg.project,
            cfg.environment,
            cfg.enabled,
            self._sampler.rate,
        )

    # ─── 属性 ───

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def sampler(self) -> Sampler:
        return self._sampler

    @property
    def context_manager(self) -> ContextManager:
        return self._context

    @property
    def transport(self) -> BatchProcessor:
        return self._processor

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def get_stats(self) -> TransportStats:
        return self._processor.stats

    def _is_live(self) -> bool:
        return self._config.enabled and not self._shutdown

    # ─── Trace ───

    async def create_trace(
        self,
        name: str,
        *,
        trace_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
    ) -> Trace:
        """Start a trace and make it the active trace of this context.

        Returns a NoOpTrace when the client is disabled, shut down, or the
        trace is not sampled.
        """
        return await self._new_trace(
            name, trace_id=trace_id, attributes=attributes, start_time=start_time, activate=True
        )

    async def start_trace(self, name: str, **options: Any) -> Trace:
        """Alias of :meth:`create_trace`."""
        return await self.create_trace(name, **options)

    async def _new_trace(
        self,
        name: str,
        *,
        trace_id: Optional[str],
        attributes: Optional[Mapping[str, Any]],
        start_time: Optional[datetime],
        activate: bool,
    ) -> Trace:
        if not self._is_live():
            return NoOpTrace(name, trace_id=trace_id)

        trace_id = trace_id or generate_trace_id()
        if not self._sampler.should_sample(trace_id, name):
            logger.debug("Trace %s (%s) not sampled", name, trace_id)
            trace: Trace = NoOpTrace(name, trace_id=trace_id)
        else:
            trace = Trace(
                name,
                trace_id=trace_id,
                attributes=attributes,
                start_time=start_time,
                reporter=self,
                context_manager=self._context,
            )
            logger.debug("Started trace %s (%s)", name, trace_id)

        # 未采样的 Trace 也要激活，子 Span 才能继承「不采样」的决定
        if activate:
            self._context.set_active_trace(trace)
        return trace

    # ─── Span ───

    async def start_span(
        self,
        name: str,
        *,
        trace_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
    ) -> Span:
        """Start a span and make it the active span of this context.

        Joins the active trace when it is unfinished and ``trace_id`` is
        omitted or matches; otherwise creates a standalone span that is
        sampled on its own.
        """
        return await self._new_span(
            name,
            trace_id=trace_id,
            parent_span_id=parent_span_id,
            kind=kind,
            attributes=attributes,
            start_time=start_time,
            activate=True,
        )

    async def _new_span(
        self,
        name: str,
        *,
        trace_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
        activate: bool = True,
    ) -> Span:
        if not self._is_live():
            return NoOpSpan(name, trace_id=trace_id or "")

        active_trace = self._context.get_active_trace()
        if (
            active_trace is not None
            and not active_trace.is_finished
            and (trace_id is None or trace_id == active_trace.trace_id)
        ):
            return await active_trace.start_span(
                name,
                parent_span_id=parent_span_id,
                kind=kind,
                attributes=attributes,
                start_time=start_time,
                activate=activate,
            )

        active_span = self._context.get_active_span()
        if active_span is not None and not active_span.is_recording:
            active_span = None
        if trace_id is None:
            trace_id = active_span.trace_id if active_span is not None else generate_trace_id()

        if not self._sampler.should_sample(trace_id, name):
            logger.debug("Span %s (%s) not sampled", name, trace_id)
            return NoOpSpan(name, trace_id=trace_id)

        parent: Optional[Span] = None
        if (
            parent_span_id is None
            and active_span is not None
            and not active_span.is_finished
            and active_span.trace_id == trace_id
        ):
            parent = active_span

        span = Span(
            name,
            trace_id=trace_id,
            parent_span_id=parent_span_id,
            kind=kind,
            attributes=attributes,
            start_time=start_time,
            parent=parent,
            reporter=self,
            context_manager=self._context,
        )
        if activate:
            self._context.set_active_span(span)
        logger.debug("Started standalone span %s (%s) in trace %s", name, span.span_id, trace_id)
        return span

    # ─── Reporter（由 Span / Trace 的 finish() 调用） ───

    def report_span(self, span: Span) -> None:
        if not span.is_recording:
            return
        self._processor.send(Batch(spans=[span.serialize()]))

    def report_trace(self, trace: Trace) -> None:
        if not trace.is_recording:
            return
        self._processor.send(Batch(traces=[trace.serialize()]))

    # ─── Context ───

    def get_active_span(self) -> Optional[Span]:
        return self._context.get_active_span()

    def get_active_trace(self) -> Optional[Trace]:
        return self._context.get_active_trace()

    async def with_span(self, span: Span, fn: Callable[[], MaybeAwaitable[T]]) -> T:
        """Run *fn* (sync or async) with *span* active."""
        with self._context.activate(span):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

    async def with_trace(self, trace: Trace, fn: Callable[[], MaybeAwaitable[T]]) -> T:
        """Run *fn* (sync or async) with *trace* active and no active span."""
        with self._context.activate_trace(trace):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

    # ─── 便捷作用域 ───

    @asynccontextmanager
    async def span(
        self,
        name: str,
        *,
        trace_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
    ) -> AsyncIterator[Span]:
        """Scoped span: active inside the block, finished on exit.

        An exception escaping the block is recorded on the span and re-raised.
        """
        span = await self._new_span(
            name,
            trace_id=trace_id,
            parent_span_id=parent_span_id,
            kind=kind,
            attributes=attributes,
            start_time=start_time,
            activate=False,
        )
        try:
            with self._context.activate(span):
                yield span
        except Exception as e:
            span.record_exception(e)
            raise
        finally:
            await span.finish()

    @asynccontextmanager
    async def trace(
        self,
        name: str,
        *,
        trace_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
    ) -> AsyncIterator[Trace]:
        """Scoped trace: active inside the block, finished on exit."""
        trace = await self._new_trace(
            name,
            trace_id=trace_id,
            attributes=attributes,
            start_time=start_time,
            activate=False,
        )
        try:
            with self._context.activate_trace(trace):
                yield trace
        except Exception as e:
            trace.set_status(SpanStatus.ERROR, str(e))
            trace.add_event(
                "exception",
                {"exception.type": type(e).__name__, "exception.message": str(e)},
            )
            raise
        finally:
            await trace.finish()

    async def run_in_span(
        self, name: str, fn: Callable[[], MaybeAwaitable[T]], **options: Any
    ) -> T:
        """Run *fn* inside a new span; the span is finished either way."""
        async with self.span(name, **options):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

    async def run_in_trace(
        self, name: str, fn: Callable[[], MaybeAwaitable[T]], **options: Any
    ) -> T:
        """Run *fn* inside a new trace; the trace is finished either way."""
        async with self.trace(name, **options):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

    # ─── 生命周期 ───

    async def flush(self) -> None:
        """Send everything buffered now. Sink errors propagate."""
        await self._processor.flush()

    async def shutdown(self) -> None:
        """Flush and stop. Afterwards only no-op traces/spans are produced.

        Repeated or concurrent calls all wait for the same final flush.
        """
        first = not self._shutdown
        self._shutdown = True
        await self._processor.shutdown()
        if first:
            logger.info("TraceClient shut down")

    async def __aenter__(self) -> TraceClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()


# ──────────────────────────────────────────────
# 全局实例
# ──────────────────────────────────────────────

_client: Optional[TraceClient] = None


def initialize(config: Optional[ClientConfig] = None, **kwargs: Any) -> TraceClient:
    """Create the process-wide client (replacing any previous one)."""
    global _client
    if _client is not None and not _client.is_shutdown:
        logger.warning("initialize() called again; previous client was not shut down")
    _client = TraceClient(config, **kwargs)
    return _client


def get_client() -> TraceClient:
    if _client is None:
        raise RuntimeError("Tracing client not initialized. Call initialize() first.")
    return _client


def is_initialized() -> bool:
    return _client is not None


def reset_for_testing() -> None:
    """Forget the global client and clear the default context."""
    global _client
    _client = None
    get_context_manager().clear()
