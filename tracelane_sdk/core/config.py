"""
客户端配置管理。

支持从环境变量 (.env) 或代码直接构造。
采样规则按声明顺序匹配，第一个命中的规则生效。
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional

from dotenv import load_dotenv

from tracelane_sdk.core.errors import ConfigurationError

DEFAULT_ENDPOINT = "https://api.noveum.ai/api/v1/traces"


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_number(name: str, value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


@dataclass
class SamplingRule:
    """Conditional sampling rate.

    Attributes:
        rate: Probability in [0, 1] used when this rule matches.
        trace_name_pattern: Regex searched in the trace name (skipped when
            the name is unknown).
        trace_id_pattern: Regex searched in the trace id.
    """

    rate: float
    trace_name_pattern: Optional[str] = None
    trace_id_pattern: Optional[str] = None


@dataclass
class SamplingConfig:
    rate: float = 1.0
    rules: List[SamplingRule] = field(default_factory=list)

    def validate(self) -> None:
        """Raise ConfigurationError on non-numeric or NaN rates and bad regexes."""
        _check_rate("sampling.rate", self.rate)
        for i, rule in enumerate(self.rules):
            _check_rate(f"sampling.rules[{i}].rate", rule.rate)
            for attr in ("trace_name_pattern", "trace_id_pattern"):
                pattern = getattr(rule, attr)
                if not pattern:
                    continue
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ConfigurationError(
                        f"sampling.rules[{i}].{attr} is not a valid regex: {e}"
                    ) from e


def _check_rate(name: str, rate: Any) -> None:
    if not isinstance(rate, (int, float)) or math.isnan(rate):
        raise ConfigurationError(f"{name} must be a number, got {rate!r}")


@dataclass
class ClientConfig:
    """Tracing client 运行配置。"""

    # ── 认证 / 归属 ──
    api_key: str = ""
    project: str = "default"
    environment: str = "development"
    endpoint: str = DEFAULT_ENDPOINT

    # ── 开关 ──
    enabled: bool = True

    # ── 批量发送 ──
    batch_size: int = 100
    flush_interval: float = 5.0  # seconds
    max_queue_size: int = 10000
    timeout: float = 30.0  # seconds, per HTTP request

    # ── 采样 ──
    sampling: SamplingConfig = field(default_factory=SamplingConfig)

    # ── 调试 ──
    debug: bool = False
    log_file: str = ""

    def with_overrides(self, **overrides: Any) -> ClientConfig:
        """Return a copy with the given fields replaced."""
        unknown = set(overrides) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        return replace(self, **overrides)

    def validate(self, require_api_key: bool = True) -> None:
        """Raise ConfigurationError on values the client cannot run with."""
        if require_api_key and not self.api_key:
            raise ConfigurationError("API key is required (set TRACELANE_API_KEY)")
        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.flush_interval <= 0:
            raise ConfigurationError(
                f"flush_interval must be > 0, got {self.flush_interval}"
            )
        if self.max_queue_size < self.batch_size:
            raise ConfigurationError("max_queue_size must be >= batch_size")
        self.sampling.validate()

    @classmethod
    def from_env(cls, env_file: str = ".env") -> ClientConfig:
        """
        从 .env 文件和环境变量中加载配置。

        环境变量优先级高于 .env 文件。
        """
        load_dotenv(env_file, override=False)

        return cls(
            api_key=os.getenv("TRACELANE_API_KEY", "").strip(),
            project=os.getenv("TRACELANE_PROJECT", "default").strip(),
            environment=os.getenv("TRACELANE_ENVIRONMENT", "development").strip(),
            endpoint=os.getenv("TRACELANE_ENDPOINT", DEFAULT_ENDPOINT).strip(),
            enabled=_to_bool(os.getenv("TRACELANE_ENABLED"), default=True),
            batch_size=int(_to_number("TRACELANE_BATCH_SIZE", os.getenv("TRACELANE_BATCH_SIZE"), 100)),
            flush_interval=_to_number(
                "TRACELANE_FLUSH_INTERVAL", os.getenv("TRACELANE_FLUSH_INTERVAL"), 5.0
            ),
            timeout=_to_number("TRACELANE_TIMEOUT", os.getenv("TRACELANE_TIMEOUT"), 30.0),
            sampling=SamplingConfig(
                rate=_to_number(
                    "TRACELANE_SAMPLE_RATE", os.getenv("TRACELANE_SAMPLE_RATE"), 1.0
                )
            ),
            debug=_to_bool(os.getenv("TRACELANE_DEBUG")),
            log_file=os.getenv("TRACELANE_LOG_FILE", "").strip(),
        )

    def summary(self) -> str:
        """返回配置摘要（敏感信息脱敏）。"""
        key_display = f"{self.api_key[:6]}..." if self.api_key else "未配置"
        return (
            f"Project: {self.project}\n"
            f"Environment: {self.environment}\n"
            f"API Key: {key_display}\n"
            f"Endpoint: {self.endpoint}\n"
            f"Enabled: {self.enabled}\n"
            f"Batch: size={self.batch_size} interval={self.flush_interval}s\n"
            f"Sample rate: {self.sampling.rate}\n"
            f"Debug: {self.debug}"
        )
