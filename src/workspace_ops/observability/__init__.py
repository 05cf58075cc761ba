"""Observability（日志配置）。"""

from __future__ import annotations

from workspace_ops.observability.logging import configure_logging

__all__ = ["configure_logging"]
