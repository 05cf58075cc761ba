"""
路径安全校验（Path Safety Validator）。

规则（纯函数，不访问文件系统）：
- 空值/非字符串 → 不安全
- 反斜杠统一为 `/` 后：以 `/` 开头或带盘符前缀（`C:`）→ 绝对路径，不安全
- 含 `../`、`/..` 或恰为 `..` → 目录穿越，不安全
- `.git`、`node_modules` 本身或其子路径 → 受保护目录，不安全（比较前去掉 `.` 与空段，`./.git`、`.//.git` 同样命中）

说明：
- 通过校验的相对路径原样使用（不做 realpath 规范化）；工作区内的符号链接不在防护范围内。
"""

from __future__ import annotations

import re
from typing import Any

from workspace_ops.core.errors import PathSafetyError

_DRIVE_PREFIX_RE = re.compile(r"^[A-Za-z]:")
PROTECTED_DIRS = (".git", "node_modules")


def is_path_safe(path: Any) -> bool:
    """判断客户端提供的相对路径是否可用。"""

    if not path or not isinstance(path, str):
        return False
    normalized = path.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_PREFIX_RE.match(normalized):
        return False
    if "../" in normalized or "/.." in normalized or normalized == "..":
        return False
    segments = [s for s in normalized.split("/") if s not in ("", ".")]
    if segments and segments[0] in PROTECTED_DIRS:
        return False
    return True


def check_path(path: Any, *, message: str = "Invalid file path") -> str:
    """
    校验路径并原样返回；不安全时抛出 `PathSafetyError`。

    参数：
    - path：待校验路径
    - message：失败时写入 Response.error 的文本
    """

    if not is_path_safe(path):
        raise PathSafetyError(path, message)
    return path
