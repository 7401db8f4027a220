"""Core — 配置、异常、ID 生成、采样与基础类型。"""

from tracelane_sdk.core.config import ClientConfig, SamplingConfig, SamplingRule
from tracelane_sdk.core.errors import ConfigurationError, TracelaneError, TransportError
from tracelane_sdk.core.ids import generate_span_id, generate_trace_id
from tracelane_sdk.core.sampler import AlwaysSampler, NeverSampler, RateSampler, Sampler
from tracelane_sdk.core.types import SpanEvent, SpanKind, SpanStatus

__all__ = [
    "ClientConfig",
    "SamplingConfig",
    "SamplingRule",
    "TracelaneError",
    "ConfigurationError",
    "TransportError",
    "generate_trace_id",
    "generate_span_id",
    "Sampler",
    "AlwaysSampler",
    "NeverSampler",
    "RateSampler",
    "SpanEvent",
    "SpanKind",
    "SpanStatus",
]
