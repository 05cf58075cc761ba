"""
命令白名单（git / exec）。

说明：
- git：只校验第一个空白分隔 token（子命令）；其余参数原样交给 shell。
  这是一层粗粒度过滤与审计线索，不是完整的 shell 语法沙箱。
- exec：整条命令必须命中固定正则之一（依赖安装、pm2 进程管理、按名称 kill、npm run）。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence

ALLOWED_GIT_SUBCOMMANDS = frozenset(
    {"status", "diff", "log", "branch", "add", "commit", "push", "pull", "fetch", "checkout", "stash"}
)

ALLOWED_EXEC_PATTERNS: Sequence[Pattern[str]] = (
    re.compile(r"^cd\s+/workspaces/[^&;|]+\s*&&\s*npm\s+(install|i)\s+"),
    re.compile(r"^pm2\s+(restart|start|stop|reload)\s+"),
    re.compile(r"^pkill\s+-f\s+"),
    re.compile(r"^npm\s+run\s+"),
)


@dataclass(frozen=True)
class CommandDecision:
    """
    白名单判定结果（确定性）。

    字段：
    - allowed：是否放行
    - reason：英文摘要（用于日志）
    - matched_rule：命中的规则（子命令名或正则文本）
    """

    allowed: bool
    reason: str
    matched_rule: Optional[str] = None


def evaluate_git_command(command: str) -> CommandDecision:
    """判定 `git <command>` 是否放行（仅看第一个 token）。"""

    tokens = (command or "").split()
    if not tokens:
        return CommandDecision(allowed=False, reason="empty git command")
    sub = tokens[0]
    if sub in ALLOWED_GIT_SUBCOMMANDS:
        return CommandDecision(allowed=True, reason="git subcommand allowed", matched_rule=sub)
    return CommandDecision(allowed=False, reason=f"git subcommand not allowed: {sub}")


def evaluate_exec_command(command: str) -> CommandDecision:
    """判定任意 shell 命令是否命中 exec 白名单正则。"""

    for pattern in ALLOWED_EXEC_PATTERNS:
        if pattern.search(command or ""):
            return CommandDecision(allowed=True, reason="matched exec pattern", matched_rule=pattern.pattern)
    return CommandDecision(allowed=False, reason="no exec pattern matched")
