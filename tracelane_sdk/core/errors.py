"""
SDK 异常体系。

- ConfigurationError: 客户端构造时配置非法（缺少凭证等），立即抛出
- TransportError: Sink 投递失败（HTTP 非 2xx、网络错误）
"""

from __future__ import annotations


class TracelaneError(Exception):
    """Base class for all SDK errors."""


class ConfigurationError(TracelaneError):
    """Raised when the client is constructed with an invalid configuration."""


class TransportError(TracelaneError):
    """Wraps a failed delivery with status code and body preview.

    ``status_code`` is 0 when the request never got a response
    (DNS failure, connection refused, timeout).
    """

    def __init__(self, status_code: int, body_preview: str = "") -> None:
        self.status_code = status_code
        self.body_preview = body_preview
        super().__init__(f"transport: http {status_code}: {body_preview}")

    @property
    def is_retryable(self) -> bool:
        return self.status_code == 0 or self.status_code >= 500 or self.status_code == 429
