"""
BatchProcessor — 批量缓冲 + 定时/定量 flush + 优雅关闭。

状态机:
    ACCUMULATING ──(数量达到 batch_size | 定时器触发)──▶ FLUSHING
    FLUSHING ──成功──▶ ACCUMULATING
    FLUSHING ──失败──▶ 记录错误，数据放回缓冲区头部 ──▶ ACCUMULATING

- 定时器从「第一个未发送的条目」进入缓冲区时开始计时（flush_interval 秒）
- 隐式 flush（数量 / 定时器触发）的失败只记录日志，不向调用方抛出
- 显式 flush() 的失败会抛给调用方，缓冲区不会丢数据
- shutdown() 幂等：停止接收 → 取消定时器 → 等待后台 flush → 最终 flush；
  并发 / 重复调用都会等待同一次最终 flush 完成
- 事件循环更换（例如多次 asyncio.run）时，丢弃旧循环上的定时器与锁
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from tracelane_sdk.transport.sinks import Sink

logger = logging.getLogger("tracelane_sdk.transport")

_TRACE = "trace"
_SPAN = "span"


@dataclass
class Batch:
    """Finished trace/span payloads sent together."""

    traces: List[Dict[str, Any]] = field(default_factory=list)
    spans: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.traces) + len(self.spans)

    def to_dict(self, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(metadata or {})
        data["traces"] = list(self.traces)
        data["spans"] = list(self.spans)
        data["timestamp"] = time.time()
        return data


@dataclass
class TransportStats:
    queue_size: int = 0
    batches_sent: int = 0
    batches_failed: int = 0
    items_sent: int = 0
    items_dropped: int = 0
    last_flush_time: Optional[float] = None
    is_shutdown: bool = False


class BatchProcessor:
    """Buffers finished payloads and delivers them to a sink in batches.

    Parameters:
        sink: Destination (``async send(batch_dict)``).
        batch_size: Flush as soon as this many items are buffered.
        flush_interval: Max seconds an item waits before a timed flush.
        max_queue_size: Items beyond this are dropped (and counted).
        metadata: Extra keys merged into every outgoing batch
            (project, environment, sdk).

    Usage::

        processor = BatchProcessor(HTTPSink(url, api_key), batch_size=50)
        processor.send(Batch(spans=[span.serialize()]))
        await processor.flush()
        await processor.shutdown()
    """

    def __init__(
        self,
        sink: Sink,
        batch_size: int = 100,
        flush_interval: float = 5.0,
        max_queue_size: int = 10000,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.sink = sink
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_queue_size = max_queue_size
        self._metadata = dict(metadata or {})

        self._items: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()
        self._flush_lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._size_flush_pending = False
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self._shutdown_task: Optional[asyncio.Future] = None
        self._stats = TransportStats()

    @property
    def stats(self) -> TransportStats:
        with self._lock:
            return replace(self._stats, queue_size=len(self._items), is_shutdown=self._closed)

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    # ─── 入队 ───

    def send(self, batch: Batch) -> bool:
        """Enqueue payloads. Returns False if nothing was accepted."""
        if self._closed:
            logger.debug("Rejecting %d item(s): processor is shut down", len(batch))
            return False

        items = [(_TRACE, t) for t in batch.traces] + [(_SPAN, s) for s in batch.spans]
        if not items:
            return True

        with self._lock:
            room = max(self.max_queue_size - len(self._items), 0)
            if room < len(items):
                dropped = len(items) - room
                items = items[:room]
                self._stats.items_dropped += dropped
                logger.warning(
                    "Queue full (%d items), dropping %d item(s)", self.max_queue_size, dropped
                )
            self._items.extend(items)

        if not items:
            return False
        self._call_on_loop(self._schedule)
        return True

    def _schedule(self) -> None:
        """Runs on the loop: size-triggered flush, or arm the timer."""
        with self._lock:
            count = len(self._items)
            size_reached = count >= self.batch_size and not self._size_flush_pending
            if size_reached:
                self._size_flush_pending = True

        if size_reached:
            logger.debug("Batch size reached (%d), triggering flush", count)
            self._spawn_flush("size")
        else:
            self._arm_timer()

    # ─── flush ───

    async def flush(self) -> None:
        """Send everything buffered now. Delivery errors propagate."""
        self._bind_loop(asyncio.get_running_loop())
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()
        async with self._flush_lock:
            await self._flush_locked()

    async def _flush_locked(self) -> None:
        self._cancel_timer()
        with self._lock:
            items, self._items = self._items, []
            self._size_flush_pending = False
        if not items:
            return

        batch = Batch(
            traces=[payload for kind, payload in items if kind == _TRACE],
            spans=[payload for kind, payload in items if kind == _SPAN],
        )
        logger.debug(
            "Flushing %d trace(s) and %d span(s)", len(batch.traces), len(batch.spans)
        )

        try:
            await self.sink.send(batch.to_dict(self._metadata))
        except Exception:
            with self._lock:
                self._items[:0] = items
                overflow = len(self._items) - self.max_queue_size
                if overflow > 0:
                    del self._items[:overflow]
                    self._stats.items_dropped += overflow
                self._stats.batches_failed += 1
            if not self._closed:
                self._arm_timer()
            raise

        with self._lock:
            self._stats.batches_sent += 1
            self._stats.items_sent += len(items)
            self._stats.last_flush_time = time.time()

    async def _flush_quietly(self, reason: str) -> None:
        try:
            await self.flush()
        except Exception as e:
            logger.error("Background flush (%s) failed: %s", reason, e)

    # ─── 关闭 ───

    async def shutdown(self) -> None:
        """Stop accepting items and drain the buffer.

        Safe to call repeatedly and concurrently: every call waits until the
        first call's final flush has settled.
        """
        if self._shutdown_task is None:
            self._closed = True
            self._cancel_timer()
            self._shutdown_task = asyncio.ensure_future(self._drain())
        await asyncio.shield(self._shutdown_task)

    async def _drain(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.flush()
        except Exception as e:
            with self._lock:
                dropped = len(self._items)
                self._items = []
                self._stats.items_dropped += dropped
            logger.error(
                "Final flush failed during shutdown, dropped %d item(s): %s", dropped, e
            )

        stats = self.stats
        logger.info(
            "BatchProcessor shut down (sent=%d failed=%d dropped=%d)",
            stats.batches_sent,
            stats.batches_failed,
            stats.items_dropped,
        )

    # ─── 定时器 / 事件循环 ───

    def _bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach to *loop*; state tied to a previous loop is discarded."""
        if loop is self._loop:
            return
        if self._loop is not None:
            logger.debug("Event loop changed, resetting flush timer and locks")
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._size_flush_pending = False
        self._flush_lock = None
        self._tasks = set()
        self._loop = loop

    def _call_on_loop(self, fn: Callable[[], None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._bind_loop(loop)
            fn()
        elif self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(fn)
        else:
            logger.debug("No running event loop; items stay buffered until flush()")

    def _arm_timer(self) -> None:
        if self._timer is not None or self._closed or self._loop is None:
            return
        with self._lock:
            if not self._items:
                return
        self._timer = self._loop.call_later(self.flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._spawn_flush("timer")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn_flush(self, reason: str) -> None:
        if self._loop is None:
            return
        task = self._loop.create_task(self._flush_quietly(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
