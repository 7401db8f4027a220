"""
测试客户端配置与异常体系。
"""

import os

import pytest

from tracelane_sdk.core.config import (
    DEFAULT_ENDPOINT,
    ClientConfig,
    SamplingConfig,
    SamplingRule,
)
from tracelane_sdk.core.errors import ConfigurationError, TracelaneError, TransportError

_ENV_VARS = [
    "TRACELANE_API_KEY",
    "TRACELANE_PROJECT",
    "TRACELANE_ENVIRONMENT",
    "TRACELANE_ENDPOINT",
    "TRACELANE_ENABLED",
    "TRACELANE_BATCH_SIZE",
    "TRACELANE_FLUSH_INTERVAL",
    "TRACELANE_TIMEOUT",
    "TRACELANE_SAMPLE_RATE",
    "TRACELANE_DEBUG",
    "TRACELANE_LOG_FILE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    # load_dotenv 直接写 os.environ
    for name in _ENV_VARS:
        os.environ.pop(name, None)


class TestClientConfig:
    """ClientConfig 默认值、校验与覆盖。"""

    def test_defaults(self):
        cfg = ClientConfig()
        assert cfg.endpoint == DEFAULT_ENDPOINT
        assert cfg.batch_size == 100
        assert cfg.flush_interval == 5.0
        assert cfg.sampling.rate == 1.0
        assert cfg.enabled is True

    def test_missing_api_key(self):
        with pytest.raises(ConfigurationError, match="API key"):
            ClientConfig().validate()

    def test_api_key_optional_when_not_required(self):
        ClientConfig().validate(require_api_key=False)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"batch_size": 0},
            {"flush_interval": 0},
            {"flush_interval": -1.0},
            {"batch_size": 50, "max_queue_size": 10},
            {"sampling": SamplingConfig(rate="high")},
            {"sampling": SamplingConfig(rate=float("nan"))},
            {"sampling": SamplingConfig(rules=[SamplingRule(rate=float("nan"))])},
            {"sampling": SamplingConfig(rules=[SamplingRule(rate=1.0, trace_name_pattern="(unclosed")])},
        ],
    )
    def test_invalid_values(self, overrides):
        cfg = ClientConfig(api_key="k").with_overrides(**overrides)
        with pytest.raises(ConfigurationError):
            cfg.validate()

    def test_with_overrides_unknown_field(self):
        with pytest.raises(ConfigurationError, match="bogus"):
            ClientConfig().with_overrides(bogus=1)

    def test_with_overrides_returns_copy(self):
        base = ClientConfig(api_key="k")
        changed = base.with_overrides(project="p")
        assert changed.project == "p"
        assert base.project == "default"

    def test_summary_masks_key(self):
        text = ClientConfig(api_key="sk-1234567890").summary()
        assert "sk-123..." in text
        assert "1234567890" not in text


class TestFromEnv:
    """从环境变量 / .env 加载。"""

    def test_reads_environment(self, clean_env, monkeypatch):
        monkeypatch.setenv("TRACELANE_API_KEY", "env-key")
        monkeypatch.setenv("TRACELANE_PROJECT", "checkout")
        monkeypatch.setenv("TRACELANE_BATCH_SIZE", "25")
        monkeypatch.setenv("TRACELANE_FLUSH_INTERVAL", "0.5")
        monkeypatch.setenv("TRACELANE_SAMPLE_RATE", "0.25")
        monkeypatch.setenv("TRACELANE_ENABLED", "false")
        monkeypatch.setenv("TRACELANE_DEBUG", "yes")

        cfg = ClientConfig.from_env()
        assert cfg.api_key == "env-key"
        assert cfg.project == "checkout"
        assert cfg.batch_size == 25
        assert cfg.flush_interval == 0.5
        assert cfg.sampling.rate == 0.25
        assert cfg.enabled is False
        assert cfg.debug is True

    def test_defaults_when_unset(self, clean_env):
        cfg = ClientConfig.from_env()
        assert cfg.api_key == ""
        assert cfg.environment == "development"
        assert cfg.timeout == 30.0

    def test_dotenv_file(self, clean_env, monkeypatch):
        env_file = clean_env / "custom.env"
        env_file.write_text("TRACELANE_API_KEY=file-key\nTRACELANE_PROJECT=from-file\n")
        monkeypatch.setenv("TRACELANE_PROJECT", "from-process")

        cfg = ClientConfig.from_env(str(env_file))
        assert cfg.api_key == "file-key"
        # 进程环境变量优先
        assert cfg.project == "from-process"

    def test_bad_number(self, clean_env, monkeypatch):
        monkeypatch.setenv("TRACELANE_BATCH_SIZE", "many")
        with pytest.raises(ConfigurationError, match="TRACELANE_BATCH_SIZE"):
            ClientConfig.from_env()

    def test_nan_sample_rate_rejected(self, clean_env, monkeypatch):
        monkeypatch.setenv("TRACELANE_SAMPLE_RATE", "nan")
        cfg = ClientConfig.from_env()
        with pytest.raises(ConfigurationError, match="sampling.rate"):
            cfg.validate(require_api_key=False)


class TestErrors:
    """异常层级与 TransportError 属性。"""

    def test_hierarchy(self):
        assert issubclass(ConfigurationError, TracelaneError)
        assert issubclass(TransportError, TracelaneError)
        # 异常只携带消息与结构化字段，没有额外的错误码属性
        assert not hasattr(ConfigurationError("bad"), "code")
        assert not hasattr(TransportError(500), "code")

    @pytest.mark.parametrize(
        "status, retryable",
        [(0, True), (500, True), (503, True), (429, True), (400, False), (401, False)],
    )
    def test_is_retryable(self, status, retryable):
        assert TransportError(status).is_retryable is retryable

    def test_message(self):
        err = TransportError(502, "bad gateway")
        assert err.status_code == 502
        assert err.body_preview == "bad gateway"
        assert "502" in str(err)


class TestSetupLogging:
    """日志初始化只作用于 SDK logger。"""

    @pytest.fixture
    def sdk_logger(self):
        import logging

        sdk_logger = logging.getLogger("tracelane_sdk")
        yield sdk_logger
        for handler in list(sdk_logger.handlers):
            sdk_logger.removeHandler(handler)
            handler.close()
        sdk_logger.setLevel(logging.NOTSET)
        sdk_logger.propagate = True

    def test_debug_and_file_handler(self, tmp_path, sdk_logger):
        import logging
        from logging.handlers import RotatingFileHandler

        from tracelane_sdk.utils.logger import setup_logging

        log_file = tmp_path / "logs" / "sdk.log"
        assert setup_logging(log_file=str(log_file), debug=True) is sdk_logger
        handlers = [h for h in sdk_logger.handlers if isinstance(h, RotatingFileHandler)]

        assert sdk_logger.level == logging.DEBUG
        assert len(handlers) == 1
        logging.getLogger("tracelane_sdk.client").info("hello file")
        handlers[0].flush()
        assert "hello file" in log_file.read_text(encoding="utf-8")

    def test_root_logger_untouched(self, sdk_logger):
        import logging

        from tracelane_sdk.utils.logger import setup_logging

        root = logging.getLogger()
        root_handlers = list(root.handlers)
        root_level = root.level

        setup_logging(debug=True)

        assert root.handlers == root_handlers
        assert root.level == root_level
        assert sdk_logger.propagate is False

    def test_repeated_setup_replaces_handlers(self, sdk_logger):
        from tracelane_sdk.utils.logger import setup_logging

        setup_logging()
        setup_logging()
        assert len(sdk_logger.handlers) == 1
