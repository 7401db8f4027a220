"""
Span — 一次计时的工作单元。

生命周期:
- 创建后处于 running 状态，end_time 为 None
- finish() 后不可再修改（修改静默忽略），end_time 只设置一次
- finish() 时序列化为 payload 交给 reporter（通常是 TraceClient），
  之后对活对象的修改不会影响已缓冲的数据

NoOpSpan 与 Span 接口一致，但所有修改都是空操作，finish() 不会上报。
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
)

from tracelane_sdk.core.ids import generate_span_id
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

if TYPE_CHECKING:
    from tracelane_sdk.tracing.context import ContextManager
    from tracelane_sdk.tracing.trace import Trace

logger = logging.getLogger("tracelane_sdk.tracing")


class Reporter(Protocol):
    """Receives finished spans/traces (implemented by TraceClient)."""

    def report_span(self, span: "Span") -> None: ...

    def report_trace(self, trace: "Trace") -> None: ...


class Span:
    """A single timed operation within a trace.

    Parameters:
        name: Human-readable operation name.
        trace_id: Id of the owning trace.
        parent_span_id: Caller-supplied parent (None for a root span).
        kind: SpanKind, default INTERNAL.
        attributes: Initial attributes (sanitized).
        start_time: Defaults to now (UTC).
        trace: Owning Trace object, if the span was created through one.
        parent: Parent Span object, when known (sets ``parent_span_id``).
        reporter: Where the serialized span goes on finish().
        context_manager: Used to step the active span back to the parent
            when this span finishes.
    """

    is_recording = True

    def __init__(
        self,
        name: str,
        *,
        trace_id: str,
        span_id: Optional[str] = None,
        parent_span_id: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
        trace: Optional["Trace"] = None,
        parent: Optional["Span"] = None,
        reporter: Optional[Reporter] = None,
        context_manager: Optional["ContextManager"] = None,
    ) -> None:
        self._span_id = span_id or generate_span_id()
        self._trace_id = trace_id
        if parent is not None and parent_span_id is None:
            parent_span_id = parent.span_id
        self._parent_span_id = parent_span_id
        self._parent = parent
        self._name = name
        self._kind = SpanKind(kind)
        self._start_time = start_time or utc_now()
        self._end_time: Optional[datetime] = None
        self._status = SpanStatus.UNSET
        self._status_message: Optional[str] = None
        self._attributes: Attributes = sanitize_attributes(attributes)
        self._events: List[SpanEvent] = []
        self._finished = False
        self._trace = trace
        self._reporter = reporter
        self._context = context_manager

    # ─── 只读属性 ───

    @property
    def span_id(self) -> str:
        return self._span_id

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def parent_span_id(self) -> Optional[str]:
        return self._parent_span_id

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> SpanKind:
        return self._kind

    @property
    def trace(self) -> Optional["Trace"]:
        return self._trace

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
    def is_root(self) -> bool:
        return not self._parent_span_id

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
    def duration_ms(self) -> Optional[float]:
        """Duration in milliseconds, None while running."""
        if self._end_time is None:
            return None
        return (self._end_time - self._start_time).total_seconds() * 1000

    # ─── 修改 ───

    def _mutable(self, what: str) -> bool:
        if self._finished:
            logger.debug("Cannot %s on finished span %s (%s)", what, self._name, self._span_id)
            return False
        return True

    def set_attribute(self, key: str, value: AttributeValue) -> None:
        if not self._mutable("set attribute"):
            return
        if not is_valid_attribute_value(value):
            logger.debug("Dropping invalid attribute %r on span %s", key, self._name)
            return
        self._attributes[key] = list(value) if isinstance(value, tuple) else value

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        if not self._mutable("set attributes"):
            return
        self._attributes.update(sanitize_attributes(attributes))

    def add_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        if not self._mutable("add event"):
            return
        self._events.append(SpanEvent(name=name, attributes=sanitize_attributes(attributes)))

    def set_status(self, status: SpanStatus, message: Optional[str] = None) -> None:
        if not self._mutable("set status"):
            return
        self._status = SpanStatus(status)
        self._status_message = message

    def record_exception(self, error: Union[BaseException, str]) -> None:
        """Mark the span as ERROR and attach the exception details."""
        if not self._mutable("record exception"):
            return
        try:
            if isinstance(error, BaseException):
                exc_type = type(error).__name__
                message = str(error)
                stack = "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                )
            else:
                exc_type, message, stack = "Exception", str(error), ""

            self.set_status(SpanStatus.ERROR, message)
            self.set_attributes({"exception.type": exc_type, "exception.message": message})
            event_attrs: Dict[str, Any] = {
                "exception.type": exc_type,
                "exception.message": message,
            }
            if stack:
                event_attrs["exception.stacktrace"] = stack
            self.add_event("exception", event_attrs)
        except Exception as e:
            logger.debug("record_exception failed on span %s: %s", self._name, e)

    # ─── 结束 ───

    async def finish(self, end_time: Optional[datetime] = None) -> None:
        """Finish the span and hand it to the reporter. Idempotent, never raises."""
        if self._finished:
            logger.debug("Span %s (%s) is already finished", self._name, self._span_id)
            return

        self._end_time = end_time or utc_now()
        if self._status is SpanStatus.UNSET:
            self._status = SpanStatus.OK
        self._finished = True

        try:
            self._release_context()
            if self._reporter is not None:
                self._reporter.report_span(self)
        except Exception as e:
            logger.warning(
                "Failed to report finished span %s (%s): %s",
                self._name,
                self._span_id,
                e,
                exc_info=True,
            )

    def _release_context(self) -> None:
        """If this span is active here, fall back to the nearest running ancestor."""
        if self._context is None or self._context.get_active_span() is not self:
            return
        ancestor = self._lookup_parent()
        while ancestor is not None and ancestor.is_finished:
            ancestor = ancestor._lookup_parent()
        self._context.set_active_span(ancestor)

    def _lookup_parent(self) -> Optional["Span"]:
        if self._parent is not None:
            return self._parent
        if self._trace is not None and self._parent_span_id:
            return self._trace.get_span(self._parent_span_id)
        return None

    async def start_child_span(
        self,
        name: str,
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        start_time: Optional[datetime] = None,
    ) -> Span:
        """Create a span whose parent is this span."""
        if self._trace is not None:
            return await self._trace.start_span(
                name,
                parent_span_id=self._span_id,
                kind=kind,
                attributes=attributes,
                start_time=start_time,
            )
        child = Span(
            name,
            trace_id=self._trace_id,
            kind=kind,
            attributes=attributes,
            start_time=start_time,
            parent=self,
            reporter=self._reporter,
            context_manager=self._context,
        )
        if self._context is not None:
            self._context.set_active_span(child)
        return child

    # ─── 序列化 ───

    def serialize(self) -> Dict[str, Any]:
        """Transport-ready dict (snake_case keys, ISO-8601 timestamps)."""
        data: Dict[str, Any] = {
            "span_id": self._span_id,
            "trace_id": self._trace_id,
            "name": self._name,
            "kind": self._kind.value,
            "start_time": format_timestamp(self._start_time),
            "duration_ms": self.duration_ms,
            "status": self._status.value,
            "attributes": dict(self._attributes),
            "events": [event.to_dict() for event in self._events],
        }
        if self._parent_span_id:
            data["parent_span_id"] = self._parent_span_id
        if self._end_time is not None:
            data["end_time"] = format_timestamp(self._end_time)
        if self._status_message:
            data["status_message"] = self._status_message
        return data

    def __repr__(self) -> str:
        duration = self.duration_ms
        shown = f"{duration:.1f}ms" if duration is not None else "running"
        return f"Span({self._name!r}, {self._span_id}, {self._status.value}, {shown})"


class NoOpSpan(Span):
    """Span for unsampled/disabled paths: same surface, records nothing."""

    is_recording = False

    def __init__(self, name: str, *, trace_id: str = "", **_: Any) -> None:
        super().__init__(name, trace_id=trace_id)

    def set_attribute(self, key: str, value: AttributeValue) -> None:
        pass

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        pass

    def set_status(self, status: SpanStatus, message: Optional[str] = None) -> None:
        pass

    def record_exception(self, error: Union[BaseException, str]) -> None:
        pass

    async def finish(self, end_time: Optional[datetime] = None) -> None:
        if not self._finished:
            self._end_time = end_time or utc_now()
            self._finished = True

    async def start_child_span(self, name: str, **_: Any) -> Span:
        return NoOpSpan(name, trace_id=self._trace_id)
