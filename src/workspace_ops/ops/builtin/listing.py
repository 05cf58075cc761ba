"""
目录列举（递归、扁平输出）。

规则：
- 以 `.` 开头的条目默认隐藏，白名单中的构建工具目录（`.astro`、`.devcontainer`）除外；
- 依赖缓存 / 构建产物 / VCS 元数据目录（`node_modules`、`dist`、`.git`）总是跳过；
- 顺序为底层存储返回的目录项顺序（不排序）；深度优先，目录条目先于其子条目；
- 某一层读取失败只记录日志，该层贡献空列表（不影响外层请求的 success）。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Sequence

logger = logging.getLogger(__name__)


def _is_visible(name: str, *, visible_dot_entries: Sequence[str], skip_names: Sequence[str]) -> bool:
    if name in skip_names:
        return False
    if name.startswith(".") and name not in visible_dot_entries:
        return False
    return True


def list_directory(
    dir_path: Path,
    base_path: str = "",
    *,
    visible_dot_entries: Sequence[str] = (".astro", ".devcontainer"),
    skip_names: Sequence[str] = ("node_modules", "dist", ".git"),
) -> List[Dict[str, Any]]:
    """
    递归列举目录。

    参数：
    - dir_path：要列举的目录（绝对路径）
    - base_path：条目 `path` 的前缀（相对列举根；空串表示工作区根）

    返回：
    - `[{"name", "path", "isDirectory"}, ...]`，`path` 使用 `/` 分隔
    """

    files: List[Dict[str, Any]] = []
    try:
        with os.scandir(dir_path) as it:
            entries = list(it)
    except OSError as e:
        logger.warning("Error listing directory %s: %s", dir_path, e)
        return files

    for entry in entries:
        if not _is_visible(entry.name, visible_dot_entries=visible_dot_entries, skip_names=skip_names):
            continue
        relative = f"{base_path}/{entry.name}" if base_path else entry.name
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError:
            is_dir = False
        files.append({"name": entry.name, "path": relative, "isDirectory": is_dir})
        if is_dir:
            files.extend(
                list_directory(
                    Path(entry.path),
                    relative,
                    visible_dot_entries=visible_dot_entries,
                    skip_names=skip_names,
                )
            )
    return files
