"""
Sampler — 无状态采样决策。

规则按声明顺序线性扫描，第一个匹配的规则的 rate 作为伯努利概率；
无规则匹配时使用全局 rate。

注意：每次调用独立抽样，同一个 trace_id 多次调用结果可能不同。
"""

from __future__ import annotations

import random
import re
from typing import List, Optional, Pattern, Tuple

from tracelane_sdk.core.config import SamplingConfig, SamplingRule


def _clamp(rate: float) -> float:
    return max(0.0, min(1.0, float(rate)))


class Sampler:
    """Decides whether a trace is recorded.

    Parameters:
        config: Global rate plus ordered rules.
            Raises ConfigurationError on a NaN rate or an invalid regex.
        rng: Random source (injectable for tests).
    """

    def __init__(
        self,
        config: Optional[SamplingConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._config = config or SamplingConfig()
        self._config.validate()
        self._rng = rng or random.Random()
        self._rate = _clamp(self._config.rate)
        self._rules: List[Tuple[SamplingRule, Optional[Pattern], Optional[Pattern]]] = [
            (
                rule,
                re.compile(rule.trace_name_pattern) if rule.trace_name_pattern else None,
                re.compile(rule.trace_id_pattern) if rule.trace_id_pattern else None,
            )
            for rule in self._config.rules
        ]

    @property
    def rate(self) -> float:
        return self._rate

    def should_sample(self, trace_id: str, name: Optional[str] = None) -> bool:
        for rule, name_re, id_re in self._rules:
            if name_re is not None and name is not None and not name_re.search(name):
                continue
            if id_re is not None and not id_re.search(trace_id):
                continue
            return self._draw(_clamp(rule.rate))
        return self._draw(self._rate)

    def _draw(self, rate: float) -> bool:
        if rate >= 1.0:
            return True
        if rate <= 0.0:
            return False
        return self._rng.random() < rate


class AlwaysSampler(Sampler):
    def __init__(self) -> None:
        super().__init__(SamplingConfig(rate=1.0))


class NeverSampler(Sampler):
    def __init__(self) -> None:
        super().__init__(SamplingConfig(rate=0.0))


class RateSampler(Sampler):
    def __init__(self, rate: float) -> None:
        super().__init__(SamplingConfig(rate=rate))
