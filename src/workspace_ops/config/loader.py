"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）。
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from workspace_ops.core.errors import ConfigError


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 整体覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class ServerSection(BaseModel):
    """
    监听地址、单条消息上限、心跳间隔与 handler 线程池。

    说明：
    - 文件操作与子进程操作（git/exec）使用两个独立线程池，长时间运行的命令不会占满文件操作的线程。
    """

    model_config = ConfigDict(extra="forbid")

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    max_message_bytes: int = Field(default=50 * 1024 * 1024, ge=1024)
    heartbeat_interval_sec: float = Field(default=20.0, gt=0)
    file_workers: int = Field(default=8, ge=1)
    process_workers: int = Field(default=16, ge=1)


class AuthSection(BaseModel):
    """鉴权配置：公钥从哪个环境变量读取（算法固定为 RS256，不可配置）。"""

    model_config = ConfigDict(extra="forbid")

    public_key_env: str = Field(default="JWT_PUBLIC_KEY", min_length=1)


class WorkspaceSection(BaseModel):
    """
    工作区配置。

    说明：
    - `root=None` 表示进程当前工作目录；
    - `serialize_mutations=true` 时，写类操作在同一工作区内串行执行（默认保持并发）。
    """

    model_config = ConfigDict(extra="forbid")

    root: Optional[str] = None
    serialize_mutations: bool = False


class FilesSection(BaseModel):
    """写文件后的样式重建触发（touch 一个固定的样式文件）。"""

    model_config = ConfigDict(extra="forbid")

    style_trigger_path: str = "src/styles/global.css"
    style_trigger_extensions: List[str] = Field(
        default_factory=lambda: [".astro", ".tsx", ".jsx", ".html", ".mdx", ".md", ".vue", ".svelte"]
    )

    @field_validator("style_trigger_extensions")
    @classmethod
    def _require_dot_prefix(cls, value: List[str]) -> List[str]:
        bad = [ext for ext in value if not ext.startswith(".")]
        if bad:
            raise ValueError(f"files.style_trigger_extensions entries must start with '.': {bad}")
        return value


class ListingSection(BaseModel):
    """目录列举的可见性规则。"""

    model_config = ConfigDict(extra="forbid")

    visible_dot_entries: List[str] = Field(default_factory=lambda: [".astro", ".devcontainer"])
    skip_names: List[str] = Field(default_factory=lambda: ["node_modules", "dist", ".git"])


class ExecSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_ms: int = Field(default=120_000, ge=1)


class GitSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout_ms: Optional[int] = Field(default=None, ge=1)


class ProtocolSection(BaseModel):
    """协议行为开关：未知 action 是否回包。"""

    model_config = ConfigDict(extra="forbid")

    unknown_action: Literal["reply", "ignore"] = "reply"


class LoggingSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class WorkspaceOpsConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    server: ServerSection = Field(default_factory=ServerSection)
    auth: AuthSection = Field(default_factory=AuthSection)
    workspace: WorkspaceSection = Field(default_factory=WorkspaceSection)
    files: FilesSection = Field(default_factory=FilesSection)
    listing: ListingSection = Field(default_factory=ListingSection)
    exec: ExecSection = Field(default_factory=ExecSection)
    git: GitSection = Field(default_factory=GitSection)
    protocol: ProtocolSection = Field(default_factory=ProtocolSection)
    logging: LoggingSection = Field(default_factory=LoggingSection)


def read_overlay(path: Path) -> Dict[str, Any]:
    """
    读取一个 YAML overlay 为 dict（空文件视为空 overlay）。

    异常：
    - ConfigError：文件不存在（`CONFIG_NOT_FOUND`）、YAML 语法错误、根节点不是 mapping
    """

    details = {"path": str(path)}
    if not path.exists():
        raise ConfigError(f"overlay config not found: {path}", code="CONFIG_NOT_FOUND", details=details)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"overlay config is not valid YAML: {path}: {e}", details=details) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"overlay config root must be a mapping(dict): {path}", details=details)
    return data


def load_config_dicts(config_dicts: List[Dict[str, Any]]) -> WorkspaceOpsConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `WorkspaceOpsConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return WorkspaceOpsConfig.model_validate(merged)
