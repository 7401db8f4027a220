"""
Trace — 共享同一 trace_id 的 Span 集合。

- start_span() 创建子 Span；未显式指定 parent 时，使用 Context Manager 中
  属于本 Trace 且仍在运行的 active span 作为 parent
- finish() 只结束 Trace 本身，不会强制结束仍在运行的子 Span；
  上报的是当时的快照，子 Span 结束后会单独上报
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from tracelane_sdk.core.ids import generate_trace_id
from tracelane_sdk.core.types import (
    AttributeValue,
    Attributes,
    SpanEvent,
    SpanKind,
    SpanStatus,
    format_timestamp,
    is_valid_attribute_value,
    sanitize_attributes,
    utc_now,
)
from tracelane_sdk.tracing.span import NoOpSpan, Reporter, Span

if TYPE_CHECKING:
    from tracelane_sdk.tracing.context import ContextManager

logger = logging.getLogger("tracelane_sdk.tracing")


@dataclass
class TraceStats:
    span_count: int = 0
    finished_span_count: int = 0
    error_span_count: int = 0
    duration_ms: Optional[float] = None


class Trace:
    """A logical end-to-end operation.

    Parameters:
        name: Trace name (also used for sampling rules).
        trace_id: Defaults to a fresh 32-hex id.
        attributes: Initial attributes (sanitized).
        start_time: Defaults to now (UTC).
        reporter: Receives the trace snapshot and every finished span.
        context_manager: Source of the implicit parent span.
    """

    is_recording = True

    def __init__(
        self,
        name: str,
        *,
        trace_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
        reporter: Optional[Reporter] = None,
        context_manager: Optional["ContextManager"] = None,
    ) -> None:
        self._trace_id = trace_id or generate_trace_id()
        self._name = name
        self._start_time = start_time or utc_now()
        self._end_time: Optional[datetime] = None
        self._status = SpanStatus.UNSET
        self._status_message: Optional[str] = None
        self._attributes: Attributes = sanitize_attributes(attributes)
        self._events: List[SpanEvent] = []
        self._spans: List[Span] = []
        self._finished = False
        self._reporter = reporter
        self._context = context_manager

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def start_time(self) -> datetime:
        return self._start_time

    @property
    def end_time(self) -> Optional[datetime]:
        return self._end_time

    @property
    def is_finished(self) -> bool:
        return self._finished

    @property
    def status(self) -> SpanStatus:
        return self._status

    @property
    def status_message(self) -> Optional[str]:
        return self._status_message

    @property
    def attributes(self) -> Attributes:
        return dict(self._attributes)

    @property
    def events(self) -> List[SpanEvent]:
        return list(self._events)

    @property
    def spans(self) -> List[Span]:
        return list(self._spans)

    @property
    def duration_ms(self) -> Optional[float]:
        if self._end_time is None:
            return None
        return (self._end_time - self._start_time).total_seconds() * 1000

    # ─── Span 创建 ───

    async def start_span(
        self,
        name: str,
        *,
        parent_span_id: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
        activate: bool = True,
    ) -> Span:
        """Create a child span.

        With ``activate=True`` (default) the span also becomes the active span
        of the current context until it finishes.
        """
        if self._finished:
            logger.warning("Cannot start span %r on finished trace %s", name, self._trace_id)
            return NoOpSpan(name, trace_id=self._trace_id)

        parent: Optional[Span] = None
        if parent_span_id is not None:
            parent = self.get_span(parent_span_id)
        elif self._context is not None:
            active = self._context.get_active_span()
            if (
                active is not None
                and active.is_recording
                and active.trace_id == self._trace_id
                and not active.is_finished
            ):
                parent = active

        span = Span(
            name,
            trace_id=self._trace_id,
            parent_span_id=parent_span_id,
            kind=kind,
            attributes=attributes,
            start_time=start_time,
            trace=self,
            parent=parent,
            reporter=self._reporter,
            context_manager=self._context,
        )
        self._spans.append(span)
        if activate and self._context is not None:
            self._context.set_active_span(span)
        logger.debug("Started span %s (%s) in trace %s", name, span.span_id, self._trace_id)
        return span

    # ─── 修改 ───

    def _mutable(self, what: str) -> bool:
        if self._finished:
            logger.debug("Cannot %s on finished trace %s", what, self._trace_id)
            return False
        return True

    def set_attribute(self, key: str, value: AttributeValue) -> None:
        if not self._mutable("set attribute"):
            return
        if is_valid_attribute_value(value):
            self._attributes[key] = list(value) if isinstance(value, tuple) else value

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        if self._mutable("set attributes"):
            self._attributes.update(sanitize_attributes(attributes))

    def add_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        if self._mutable("add event"):
            self._events.append(SpanEvent(name=name, attributes=sanitize_attributes(attributes)))

    def set_status(self, status: SpanStatus, message: Optional[str] = None) -> None:
        if self._mutable("set status"):
            self._status = SpanStatus(status)
            self._status_message = message

    def get_status(self) -> SpanStatus:
        return self._status

    # ─── 结束 ───

    async def finish(self, end_time: Optional[datetime] = None) -> None:
        """Finish the trace (not its spans) and report the snapshot. Idempotent."""
        if self._finished:
            logger.debug("Trace %s is already finished", self._trace_id)
            return

        self._end_time = end_time or utc_now()
        if self._status is SpanStatus.UNSET:
            self._status = SpanStatus.OK
        self._finished = True

        running = sum(1 for span in self._spans if not span.is_finished)
        if running:
            logger.debug(
                "Trace %s finished with %d running span(s); they report on their own finish",
                self._trace_id,
                running,
            )

        if self._reporter is None:
            return
        try:
            self._reporter.report_trace(self)
        except Exception as e:
            logger.warning("Failed to report trace %s: %s", self._trace_id, e, exc_info=True)

    # ─── 查询 ───

    def get_span(self, span_id: str) -> Optional[Span]:
        for span in self._spans:
            if span.span_id == span_id:
                return span
        return None

    def get_root_span(self) -> Optional[Span]:
        for span in self._spans:
            if span.is_root:
                return span
        return None

    def get_child_spans(self, parent_span_id: str) -> List[Span]:
        return [span for span in self._spans if span.parent_span_id == parent_span_id]

    def get_stats(self) -> TraceStats:
        return TraceStats(
            span_count=len(self._spans),
            finished_span_count=sum(1 for s in self._spans if s.is_finished),
            error_span_count=sum(1 for s in self._spans if s.status is SpanStatus.ERROR),
            duration_ms=self.duration_ms,
        )

    # ─── 序列化 ───

    def serialize(self) -> Dict[str, Any]:
        spans = [span.serialize() for span in self._spans]
        data: Dict[str, Any] = {
            "trace_id": self._trace_id,
            "name": self._name,
            "start_time": format_timestamp(self._start_time),
            "duration_ms": self.duration_ms,
            "status": self._status.value,
            "attributes": dict(self._attributes),
            "events": [event.to_dict() for event in self._events],
            "span_count": len(spans),
            "error_count": sum(1 for s in spans if s["status"] == SpanStatus.ERROR.value),
            "spans": spans,
        }
        if self._end_time is not None:
            data["end_time"] = format_timestamp(self._end_time)
        if self._status_message:
            data["status_message"] = self._status_message
        return data

    def __repr__(self) -> str:
        duration = self.duration_ms
        shown = f"{duration:.1f}ms" if duration is not None else "running"
        return f"Trace({self._name!r}, {self._trace_id}, {len(self._spans)} spans, {shown})"


class NoOpTrace(Trace):
    """Trace for unsampled/disabled paths: same surface, records nothing."""

    is_recording = False

    def __init__(self, name: str, *, trace_id: Optional[str] = None, **_: Any) -> None:
        super().__init__(name, trace_id=trace_id)

    async def start_span(self, name: str, **_: Any) -> Span:
        return NoOpSpan(name, trace_id=self._trace_id)

    def set_attribute(self, key: str, value: AttributeValue) -> None:
        pass

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        pass

    def set_status(self, status: SpanStatus, message: Optional[str] = None) -> None:
        pass

    async def finish(self, end_time: Optional[datetime] = None) -> None:
        if not self._finished:
            self._end_time = end_time or utc_now()
            self._finished = True
