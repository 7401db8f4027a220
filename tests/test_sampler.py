"""
测试采样器与 ID 生成。
"""

import random
import re

import pytest

from tracelane_sdk.core.config import SamplingConfig, SamplingRule
from tracelane_sdk.core.errors import ConfigurationError
from tracelane_sdk.core.ids import generate_span_id, generate_trace_id
from tracelane_sdk.core.sampler import AlwaysSampler, NeverSampler, RateSampler, Sampler


class _FixedRandom(random.Random):
    def __init__(self, value: float):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


class TestIds:
    """ID 格式与唯一性。"""

    def test_trace_id_format(self):
        trace_id = generate_trace_id()
        assert re.fullmatch(r"[0-9a-f]{32}", trace_id)

    def test_span_id_format(self):
        span_id = generate_span_id()
        assert re.fullmatch(r"[0-9a-f]{16}", span_id)

    def test_ids_unique(self):
        assert len({generate_trace_id() for _ in range(1000)}) == 1000
        assert len({generate_span_id() for _ in range(1000)}) == 1000


class TestSampler:
    """全局 rate 与规则匹配。"""

    def test_rate_one_always_samples(self):
        sampler = Sampler(SamplingConfig(rate=1.0))
        assert all(sampler.should_sample(generate_trace_id()) for _ in range(1000))

    def test_rate_zero_never_samples(self):
        sampler = Sampler(SamplingConfig(rate=0.0))
        assert not any(sampler.should_sample(generate_trace_id()) for _ in range(1000))

    def test_rate_is_clamped(self):
        assert Sampler(SamplingConfig(rate=5)).rate == 1.0
        assert Sampler(SamplingConfig(rate=-1)).rate == 0.0

    def test_nan_rate_rejected(self):
        with pytest.raises(ConfigurationError, match="must be a number"):
            Sampler(SamplingConfig(rate=float("nan")))

    def test_invalid_rule_regex_rejected(self):
        config = SamplingConfig(rules=[SamplingRule(rate=1.0, trace_id_pattern="[")])
        with pytest.raises(ConfigurationError, match="trace_id_pattern"):
            Sampler(config)

    def test_fractional_rate_uses_rng(self):
        assert Sampler(SamplingConfig(rate=0.5), rng=_FixedRandom(0.4)).should_sample("t")
        assert not Sampler(SamplingConfig(rate=0.5), rng=_FixedRandom(0.6)).should_sample("t")

    def test_fractional_rate_is_roughly_honoured(self):
        sampler = Sampler(SamplingConfig(rate=0.3), rng=random.Random(42))
        hits = sum(sampler.should_sample(generate_trace_id()) for _ in range(5000))
        assert 1200 < hits < 1800

    def test_first_matching_rule_wins(self):
        config = SamplingConfig(
            rate=0.0,
            rules=[
                SamplingRule(rate=1.0, trace_name_pattern=r"^health"),
                SamplingRule(rate=0.0, trace_name_pattern=r"check"),
            ],
        )
        sampler = Sampler(config)
        assert sampler.should_sample("abc", "health-check") is True
        assert sampler.should_sample("abc", "deep-check") is False

    def test_name_rule_skipped_when_name_unknown(self):
        config = SamplingConfig(
            rate=1.0,
            rules=[SamplingRule(rate=0.0, trace_name_pattern=r"noisy")],
        )
        sampler = Sampler(config)
        # 名称未知时，名称条件不参与判断，规则仍然命中
        assert sampler.should_sample("abc") is False
        assert sampler.should_sample("abc", "quiet") is True

    def test_trace_id_rule(self):
        config = SamplingConfig(
            rate=0.0,
            rules=[SamplingRule(rate=1.0, trace_id_pattern=r"^ff")],
        )
        sampler = Sampler(config)
        assert sampler.should_sample("ff00") is True
        assert sampler.should_sample("00ff") is False

    def test_no_rule_match_falls_back_to_global_rate(self):
        config = SamplingConfig(
            rate=1.0,
            rules=[SamplingRule(rate=0.0, trace_name_pattern=r"^batch")],
        )
        assert Sampler(config).should_sample("abc", "interactive") is True


class TestSamplerVariants:
    """固定采样器。"""

    @pytest.mark.parametrize(
        "sampler, expected",
        [(AlwaysSampler(), True), (NeverSampler(), False), (RateSampler(1.0), True)],
    )
    def test_fixed(self, sampler, expected):
        assert sampler.should_sample(generate_trace_id(), "anything") is expected
