"""
SDK 日志配置工具。

只配置 ``tracelane_sdk`` 这一棵 logger（client / transport / tracing 等子 logger
都挂在它下面），不触碰 root logger，宿主应用自己的日志配置保持不变。
TraceClient 在 config.debug=True 时会自动调用。
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

SDK_LOGGER_NAME = "tracelane_sdk"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

# 标记由本模块添加的 handler，重复调用时只替换这些
_HANDLER_MARK = "_tracelane_handler"


def setup_logging(
    level: int = logging.INFO,
    log_file: str = "",
    debug: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    为 SDK logger 安装终端 / 文件输出。

    Args:
        level: 日志级别。
        log_file: 日志文件路径（为空则仅输出到终端）。
        debug: 是否开启 DEBUG 模式（覆盖 level）。
        propagate: 是否继续向 root logger 传递记录。默认关闭，避免宿主
            已配置 root handler 时重复输出。

    Returns:
        ``tracelane_sdk`` Logger 实例。
    """
    if debug:
        level = logging.DEBUG

    sdk_logger = logging.getLogger(SDK_LOGGER_NAME)
    sdk_logger.setLevel(level)
    sdk_logger.propagate = propagate

    for handler in list(sdk_logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            sdk_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    _add_handler(sdk_logger, console)

    # 文件输出
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        fh.setFormatter(formatter)
        _add_handler(sdk_logger, fh)

    return sdk_logger


def _add_handler(sdk_logger: logging.Logger, handler: logging.Handler) -> None:
    setattr(handler, _HANDLER_MARK, True)
    sdk_logger.addHandler(handler)
