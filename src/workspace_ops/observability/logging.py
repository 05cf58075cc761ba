"""
日志配置（stdlib logging）。

约定：
- 日志统一写到 stderr；stdout 留给 CLI 的机器可读输出（例如 `check-path` 的 JSON）；
- 只在进程入口调用一次；重复调用会替换本模块安装的 handler，不会叠加。
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_NAME = "workspace_ops.stderr"

# 第三方库默认过于啰嗦（每个帧都会打 DEBUG）。
_QUIET_LOGGERS = ("websockets",)


def configure_logging(level: str = "INFO", *, stream: Optional[TextIO] = None) -> logging.Handler:
    """
    安装 stderr handler 并设置 root 级别。

    参数：
    - level：DEBUG / INFO / WARNING / ERROR（大小写不敏感；非法值回落为 INFO）
    - stream：输出流（默认 sys.stderr；测试可注入）

    返回：
    - 本次安装的 handler
    """

    log_level = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.INFO))
    return handler
