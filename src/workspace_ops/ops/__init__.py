"""
Operations：action 注册表与内置 handler。
"""

from __future__ import annotations

from workspace_ops.ops.builtin import register_builtin_actions
from workspace_ops.ops.registry import ActionHandler, ActionRegistry, ActionSpec, OperationContext

__all__ = [
    "ActionHandler",
    "ActionRegistry",
    "ActionSpec",
    "OperationContext",
    "register_builtin_actions",
]
