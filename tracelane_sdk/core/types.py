"""
公共类型：Span 状态 / 类型枚举、属性清洗、时间戳格式化。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

logger = logging.getLogger("tracelane_sdk.types")

Scalar = Union[str, int, float, bool]
AttributeValue = Union[Scalar, List[str], List[int], List[float], List[bool]]
Attributes = Dict[str, AttributeValue]


class SpanStatus(str, Enum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class SpanKind(str, Enum):
    INTERNAL = "internal"
    CLIENT = "client"
    SERVER = "server"
    PRODUCER = "producer"
    CONSUMER = "consumer"


@dataclass
class SpanEvent:
    """A timestamped annotation on a span or trace."""

    name: str
    timestamp: datetime = field(default_factory=lambda: utc_now())
    attributes: Attributes = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "timestamp": format_timestamp(self.timestamp),
            "attributes": dict(self.attributes),
        }


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render as ``2025-07-29T18:18:34.786583+00:00``.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def is_valid_attribute_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, bool, int, float)):
        return True
    if isinstance(value, (list, tuple)):
        if not value:
            return True
        first = type(value[0])
        if first not in (str, bool, int, float):
            return False
        return all(type(item) is first for item in value)
    return False


def sanitize_attributes(attributes: Optional[Mapping[str, Any]]) -> Attributes:
    """Drop values that are not a scalar or a homogeneous list of scalars."""
    if not attributes:
        return {}
    clean: Attributes = {}
    for key, value in attributes.items():
        if not is_valid_attribute_value(value):
            logger.debug("Dropping invalid attribute %r (%s)", key, type(value).__name__)
            continue
        clean[str(key)] = list(value) if isinstance(value, tuple) else value
    return clean
