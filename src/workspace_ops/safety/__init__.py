"""
Safety（路径校验 + 命令白名单）模块。
"""

from __future__ import annotations

from workspace_ops.safety.commands import (
    ALLOWED_EXEC_PATTERNS,
    ALLOWED_GIT_SUBCOMMANDS,
    CommandDecision,
    evaluate_exec_command,
    evaluate_git_command,
)
from workspace_ops.safety.paths import check_path, is_path_safe

__all__ = [
    "ALLOWED_EXEC_PATTERNS",
    "ALLOWED_GIT_SUBCOMMANDS",
    "CommandDecision",
    "check_path",
    "evaluate_exec_command",
    "evaluate_git_command",
    "is_path_safe",
]
