"""
Bootstrap Layer（启动期配置发现 / 来源追踪 / 公钥加载）。

设计目标：
- 运行期不做隐式 I/O：所有配置在启动时一次性解析为不可变的 `ServerSettings`；
- 配置来源按固定顺序合并：内置默认 → 发现的 overlays → 环境变量 → CLI 参数；
- 任一环节失败统一抛 `ConfigError`，由 CLI 显式退出（不带 traceback）。
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import ValidationError

from workspace_ops.config.defaults import load_default_config_dict
from workspace_ops.config.loader import WorkspaceOpsConfig, load_config_dicts, read_overlay
from workspace_ops.core.errors import ConfigError
from workspace_ops.server.auth import load_public_key

ENV_FILE_KEY = "WORKSPACE_OPS_ENV_FILE"
CONFIG_PATHS_KEY = "WORKSPACE_OPS_CONFIG_PATHS"
DEFAULT_OVERLAY = Path(".workspace_ops") / "config.yaml"

# 环境变量 → 配置字段（dotted path）。
ENV_OVERRIDES: Tuple[Tuple[str, str], ...] = (
    ("WORKSPACE_OPS_HOST", "server.host"),
    ("WORKSPACE_OPS_PORT", "server.port"),
    ("WORKSPACE_OPS_ROOT", "workspace.root"),
)


def _get_env_nonempty(key: str) -> Optional[str]:
    """读取 env；空串或仅空白视为未设置。"""

    value = os.environ.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _split_paths(raw: str) -> List[str]:
    """将逗号/分号分隔的路径串切分为片段列表（去空白、去空项、保序）。"""

    parts: List[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


# `KEY=VALUE`，可带 `export ` 前缀；键必须是合法的环境变量名。
_ENV_LINE_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _parse_env_text(text: str) -> Dict[str, str]:
    """解析 `.env` 文本；注释、空行与无法识别的行被跳过。"""

    matches = (_ENV_LINE_RE.match(line.strip()) for line in text.splitlines())
    return {m.group(1): _unquote(m.group(2).strip()) for m in matches if m is not None}


def _apply_dotenv(path: Path, *, override: bool) -> None:
    for key, value in _parse_env_text(path.read_text(encoding="utf-8")).items():
        if override:
            os.environ[key] = value
        else:
            os.environ.setdefault(key, value)


def load_dotenv_if_present(*, workspace_root: Path, override: bool = False) -> Optional[Path]:
    """
    约定加载：
    1) 若设置 `WORKSPACE_OPS_ENV_FILE`，加载其指向的文件（相对路径相对 workspace_root；不存在则报错）
    2) 否则若 `<workspace_root>/.env` 存在，加载之

    参数：
    - workspace_root：相对路径锚点
    - override：是否覆盖已存在的 env（默认 False）
    """

    ws = Path(workspace_root).resolve()
    p = _get_env_nonempty(ENV_FILE_KEY)
    if p is not None:
        env_path = Path(p).expanduser()
        if not env_path.is_absolute():
            env_path = (ws / env_path).resolve()
        if not env_path.exists():
            raise ConfigError(f"env file not found: {env_path}", code="ENV_FILE_NOT_FOUND", details={"path": str(env_path)})
        _apply_dotenv(env_path, override=override)
        return env_path

    default_env = ws / ".env"
    if default_env.is_file():
        _apply_dotenv(default_env, override=override)
        return default_env
    return None


def discover_overlay_paths(*, workspace_root: Path, extra_paths: Sequence[Path] = ()) -> List[Path]:
    """
    overlay 路径发现（顺序稳定，按 canonical path 去重）：
    1) `<workspace_root>/.workspace_ops/config.yaml`（存在时）
    2) `WORKSPACE_OPS_CONFIG_PATHS`（逗号/分号分隔）
    3) 调用方显式传入的路径（CLI `--config`）
    """

    ws = Path(workspace_root).resolve()
    overlays: List[Path] = []

    default_overlay = ws / DEFAULT_OVERLAY
    if default_overlay.is_file():
        overlays.append(default_overlay.resolve())

    for p in _split_paths(_get_env_nonempty(CONFIG_PATHS_KEY) or ""):
        pp = Path(p).expanduser()
        overlays.append((ws / pp).resolve() if not pp.is_absolute() else pp.resolve())

    for p in extra_paths:
        overlays.append(Path(p).expanduser().resolve())

    seen: set[Path] = set()
    uniq: List[Path] = []
    for p in overlays:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


def _record_leaf_sources(value: Any, *, prefix: str, sources: Dict[str, str], label: str) -> None:
    if isinstance(value, Mapping):
        for k, v in value.items():
            path = f"{prefix}.{k}" if prefix else str(k)
            _record_leaf_sources(v, prefix=path, sources=sources, label=label)
        return
    sources[prefix] = label


def _set_dotted(target: Dict[str, Any], dotted: str, value: Any) -> None:
    node = target
    parts = dotted.split(".")
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


@dataclass(frozen=True)
class ServerSettings:
    """
    启动期解析完成的服务设置（不可变）。

    字段：
    - config：校验后的配置
    - public_key：JWT 校验公钥
    - workspace_root：工作区绝对路径
    - overlay_paths：参与合并的 overlay 文件
    - env_file：实际加载的 `.env`（若无则为 None）
    - sources：字段来源追踪（dotted path → 来源标签）
    """

    config: WorkspaceOpsConfig
    public_key: rsa.RSAPublicKey
    workspace_root: Path
    overlay_paths: Tuple[str, ...] = ()
    env_file: Optional[str] = None
    sources: Mapping[str, str] = field(default_factory=dict)


def resolve_config(
    *,
    workspace_root: Path,
    config_paths: Sequence[Path] = (),
    overrides: Optional[Mapping[str, Any]] = None,
) -> Tuple[WorkspaceOpsConfig, List[Path], Dict[str, str]]:
    """
    合并配置：内置默认 → overlays → 环境变量 → overrides（CLI）。

    参数：
    - workspace_root：overlay 发现与相对路径的锚点
    - config_paths：显式 overlay
    - overrides：dotted path → 值（None 值被忽略）

    返回：
    - (config, overlay_paths, sources)
    """

    overlay_paths = discover_overlay_paths(workspace_root=workspace_root, extra_paths=config_paths)
    layers: List[Tuple[str, Dict[str, Any]]] = [("embedded_default", load_default_config_dict())]
    layers.extend((f"overlay:{p}", read_overlay(p)) for p in overlay_paths)

    pinned: Dict[str, Any] = {}
    pinned_sources: Dict[str, str] = {}
    for env_key, dotted in ENV_OVERRIDES:
        value = _get_env_nonempty(env_key)
        if value is not None:
            _set_dotted(pinned, dotted, value)
            pinned_sources[dotted] = f"env:{env_key}"
    for dotted, value in (overrides or {}).items():
        if value is not None:
            _set_dotted(pinned, dotted, value)
            pinned_sources[dotted] = "cli"

    # 后出现的层覆盖先前层的叶子来源；env/CLI 最后写入。
    sources: Dict[str, str] = {}
    for label, layer in layers:
        _record_leaf_sources(layer, prefix="", sources=sources, label=label)
    sources.update(pinned_sources)

    try:
        config = load_config_dicts([layer for _, layer in layers] + [pinned])
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}", details={"errors": e.error_count()}) from e
    return config, overlay_paths, sources


def build_server_settings(
    *,
    workspace_root: Optional[Path] = None,
    config_paths: Sequence[Path] = (),
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServerSettings:
    """
    构建服务设置（启动时调用一次）。

    参数：
    - workspace_root：发现 `.env` / overlays 的锚点；None 表示 `WORKSPACE_OPS_ROOT` 或当前目录
    - config_paths：显式 overlay（CLI `--config`）
    - overrides：CLI 覆盖（dotted path → 值）

    异常：
    - ConfigError：`.env`/overlay 缺失或非法、配置校验失败、工作区不存在、公钥缺失或格式错误
    """

    anchor = Path(workspace_root or _get_env_nonempty("WORKSPACE_OPS_ROOT") or os.getcwd()).expanduser().resolve()
    env_file = load_dotenv_if_present(workspace_root=anchor)

    config, overlay_paths, sources = resolve_config(
        workspace_root=anchor, config_paths=config_paths, overrides=overrides
    )

    root = Path(config.workspace.root).expanduser() if config.workspace.root else anchor
    if not root.is_absolute():
        root = anchor / root
    root = root.resolve()
    if not root.is_dir():
        raise ConfigError(f"workspace root is not a directory: {root}", code="WORKSPACE_NOT_FOUND", details={"root": str(root)})

    env_name = config.auth.public_key_env
    public_key = load_public_key(os.environ.get(env_name), env_name=env_name)

    return ServerSettings(
        config=config,
        public_key=public_key,
        workspace_root=root,
        overlay_paths=tuple(str(p) for p in overlay_paths),
        env_file=str(env_file) if env_file is not None else None,
        sources=dict(sources),
    )
