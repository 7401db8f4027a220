"""
Tracing — Trace / Span 数据模型与上下文传播。

Quick Start::

    from tracelane_sdk.tracing import Trace, get_context_manager

    trace = Trace("checkout", context_manager=get_context_manager())
    span = await trace.start_span("charge-card")
    span.set_attribute("amount", 42)
    await span.finish()
    await trace.finish()
"""

from tracelane_sdk.tracing.context import (
    ContextFrame,
    ContextManager,
    get_context_manager,
    get_current_span,
    get_current_trace,
    set_context_manager,
)
from tracelane_sdk.tracing.span import NoOpSpan, Reporter, Span
from tracelane_sdk.tracing.trace import NoOpTrace, Trace, TraceStats

__all__ = [
    "ContextFrame",
    "ContextManager",
    "get_context_manager",
    "set_context_manager",
    "get_current_span",
    "get_current_trace",
    "Reporter",
    "Span",
    "NoOpSpan",
    "Trace",
    "NoOpTrace",
    "TraceStats",
]
