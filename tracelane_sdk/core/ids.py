"""Trace / Span ID 生成。"""

from __future__ import annotations

import secrets
import uuid


def generate_trace_id() -> str:
    """32 hex chars (uuid4, 122 random bits)."""
    return uuid.uuid4().hex


def generate_span_id() -> str:
    """16 hex chars (64 random bits)."""
    return secrets.token_hex(8)
