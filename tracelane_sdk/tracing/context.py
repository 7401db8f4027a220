"""
Context Manager — 基于 contextvars 的「当前 Trace / 当前 Span」追踪。

每个逻辑调用链持有一个不可变的 ContextFrame 栈：
进入作用域 = 压栈（ContextVar.set），离开作用域 = 出栈（ContextVar.reset），
无论正常返回还是抛出异常。

asyncio.Task 创建时会复制当前 Context，因此并发的兄弟分支彼此隔离，
不会看到对方的 active span，除非显式传递。

限制：如果 fn 永远不结束，压入的帧永远不会弹出，调用方需自行限制时长。
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    TypeVar,
)

if TYPE_CHECKING:
    from tracelane_sdk.tracing.span import Span
    from tracelane_sdk.tracing.trace import Trace

logger = logging.getLogger("tracelane_sdk.tracing.context")

T = TypeVar("T")


@dataclass(frozen=True)
class ContextFrame:
    """What is active right now for one logical call chain.

    Attributes:
        trace: Active trace, if any.
        span: Active span, if any.
        parent: The frame that was active before this one was pushed.
    """

    trace: Optional["Trace"] = None
    span: Optional["Span"] = None
    parent: Optional["ContextFrame"] = None


_EMPTY = ContextFrame()


def _trace_of(span: Optional["Span"], fallback: Optional["Trace"]) -> Optional["Trace"]:
    owner = getattr(span, "trace", None)
    return owner if owner is not None else fallback


class ContextManager:
    """Tracks the active trace/span per asyncio task (or thread).

    Usage::

        cm = ContextManager()

        async def handler():
            async def work():
                assert cm.get_active_span() is span
            await cm.with_span_async(span, work)

        with cm.activate(span):
            ...
    """

    def __init__(self, name: str = "tracelane_context") -> None:
        self._var: ContextVar[Optional[ContextFrame]] = ContextVar(name, default=None)

    def _frame(self) -> ContextFrame:
        return self._var.get() or _EMPTY

    # ─── 读取 ───

    def get_active_span(self) -> Optional["Span"]:
        return self._frame().span

    def get_active_trace(self) -> Optional["Trace"]:
        return self._frame().trace

    def get_span_stack(self) -> List["Span"]:
        """Spans of every pushed frame, outermost first."""
        stack: List["Span"] = []
        frame: Optional[ContextFrame] = self._var.get()
        while frame is not None:
            if frame.span is not None:
                stack.append(frame.span)
            frame = frame.parent
        stack.reverse()
        return stack

    def get_parent_span(self) -> Optional["Span"]:
        stack = self.get_span_stack()
        return stack[-2] if len(stack) > 1 else None

    def context_info(self) -> Dict[str, Any]:
        frame = self._frame()
        return {
            "has_active_trace": frame.trace is not None,
            "has_active_span": frame.span is not None,
            "span_stack_depth": len(self.get_span_stack()),
        }

    # ─── 非作用域修改（仅影响当前 Context） ───

    def set_active_span(self, span: Optional["Span"]) -> None:
        frame = self._frame()
        self._var.set(replace(frame, span=span, trace=_trace_of(span, frame.trace)))

    def set_active_trace(self, trace: Optional["Trace"]) -> None:
        frame = self._frame()
        self._var.set(replace(frame, trace=trace))

    def clear(self) -> None:
        self._var.set(None)

    # ─── 作用域 ───

    @contextmanager
    def activate(self, span: "Span") -> Iterator["Span"]:
        """Make *span* active until the block exits (normally or not)."""
        frame = self._frame()
        token = self._var.set(
            ContextFrame(trace=_trace_of(span, frame.trace), span=span, parent=self._var.get())
        )
        try:
            yield span
        finally:
            self._var.reset(token)

    @contextmanager
    def activate_trace(self, trace: "Trace") -> Iterator["Trace"]:
        """Make *trace* active with an empty span stack until the block exits."""
        token = self._var.set(ContextFrame(trace=trace, span=None, parent=None))
        try:
            yield trace
        finally:
            self._var.reset(token)

    def with_span(self, span: "Span", fn: Callable[[], T]) -> T:
        with self.activate(span):
            return fn()

    async def with_span_async(self, span: "Span", fn: Callable[[], Awaitable[T]]) -> T:
        with self.activate(span):
            return await fn()

    def with_trace(self, trace: "Trace", fn: Callable[[], T]) -> T:
        with self.activate_trace(trace):
            return fn()

    async def with_trace_async(self, trace: "Trace", fn: Callable[[], Awaitable[T]]) -> T:
        with self.activate_trace(trace):
            return await fn()


# ──────────────────────────────────────────────
# 进程级默认实例
# ──────────────────────────────────────────────

_default_manager = ContextManager()


def get_context_manager() -> ContextManager:
    return _default_manager


def set_context_manager(manager: ContextManager) -> None:
    global _default_manager
    _default_manager = manager


def get_current_span() -> Optional["Span"]:
    return _default_manager.get_active_span()


def get_current_trace() -> Optional["Trace"]:
    return _default_manager.get_active_trace()
