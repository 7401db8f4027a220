"""
Tracelane SDK — client-side tracing for Python services.

创建 Trace / Span 描述一次请求的工作单元，附加属性和事件，
由 SDK 批量发送到采集端（collector）。

Quick Start:
    from tracelane_sdk import ClientConfig, initialize

    client = initialize(ClientConfig.from_env())

    async def handle(order_id: str):
        async with client.trace("handle-order") as trace:
            trace.set_attribute("order.id", order_id)
            async with client.span("db.query") as span:
                span.set_attribute("db.table", "orders")

    await client.shutdown()
"""

__version__ = "0.1.0"

from tracelane_sdk.core.config import ClientConfig, SamplingConfig, SamplingRule
from tracelane_sdk.core.errors import ConfigurationError, TracelaneError, TransportError
from tracelane_sdk.core.ids import generate_span_id, generate_trace_id
from tracelane_sdk.core.sampler import AlwaysSampler, NeverSampler, RateSampler, Sampler
from tracelane_sdk.core.types import SpanEvent, SpanKind, SpanStatus
from tracelane_sdk.tracing.context import (
    ContextManager,
    get_context_manager,
    get_current_span,
    get_current_trace,
)
from tracelane_sdk.tracing.span import NoOpSpan, Span
from tracelane_sdk.tracing.trace import NoOpTrace, Trace, TraceStats
from tracelane_sdk.transport.batch import Batch, BatchProcessor, TransportStats
from tracelane_sdk.transport.sinks import (
    CallbackSink,
    ConsoleSink,
    HTTPSink,
    InMemorySink,
    NullSink,
    Sink,
)
from tracelane_sdk.client import (
    TraceClient,
    get_client,
    initialize,
    is_initialized,
    reset_for_testing,
)
from tracelane_sdk.utils.logger import setup_logging

__all__ = [
    "TraceClient",
    "ClientConfig",
    "SamplingConfig",
    "SamplingRule",
    "initialize",
    "get_client",
    "is_initialized",
    "reset_for_testing",
    "TracelaneError",
    "ConfigurationError",
    "TransportError",
    "generate_trace_id",
    "generate_span_id",
    "Sampler",
    "AlwaysSampler",
    "NeverSampler",
    "RateSampler",
    "Span",
    "NoOpSpan",
    "SpanEvent",
    "SpanKind",
    "SpanStatus",
    "Trace",
    "NoOpTrace",
    "TraceStats",
    "ContextManager",
    "get_context_manager",
    "get_current_span",
    "get_current_trace",
    "Batch",
    "BatchProcessor",
    "TransportStats",
    "Sink",
    "HTTPSink",
    "ConsoleSink",
    "CallbackSink",
    "InMemorySink",
    "NullSink",
    "setup_logging",
    "__version__",
]
