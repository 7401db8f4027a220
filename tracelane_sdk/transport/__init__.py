"""Transport — 批量缓冲与 Sink 投递。"""

from tracelane_sdk.transport.batch import Batch, BatchProcessor, TransportStats
from tracelane_sdk.transport.sinks import (
    CallbackSink,
    ConsoleSink,
    HTTPSink,
    InMemorySink,
    NullSink,
    Sink,
)

__all__ = [
    "Batch",
    "BatchProcessor",
    "TransportStats",
    "Sink",
    "HTTPSink",
    "ConsoleSink",
    "CallbackSink",
    "InMemorySink",
    "NullSink",
]
