"""
Core：错误分类、子进程执行器与工作区能力对象。
"""

from __future__ import annotations

from workspace_ops.core.errors import (
    AuthenticationError,
    ConfigError,
    FrameworkError,
    OperationError,
    PathSafetyError,
    WorkspaceOpsError,
)
from workspace_ops.core.executor import CommandResult, Executor
from workspace_ops.core.workspace import Workspace

__all__ = [
    "AuthenticationError",
    "CommandResult",
    "ConfigError",
    "Executor",
    "FrameworkError",
    "OperationError",
    "PathSafetyError",
    "Workspace",
    "WorkspaceOpsError",
]
