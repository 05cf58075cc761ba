"""配置（默认值 + YAML overlays + pydantic 校验）。"""

from __future__ import annotations

from workspace_ops.config.defaults import load_default_config_dict
from workspace_ops.config.loader import WorkspaceOpsConfig, load_config_dicts, read_overlay

__all__ = ["WorkspaceOpsConfig", "load_config_dicts", "load_default_config_dict", "read_overlay"]
