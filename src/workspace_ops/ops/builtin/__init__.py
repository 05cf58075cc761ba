"""
内置 action 集合。

`register_builtin_actions(registry)` 把文件 / git / exec 三组 handler 注册到注册表；
失败 Response 的回显字段与附加字段在这里集中声明。
"""

from __future__ import annotations

from workspace_ops.ops.builtin import exec_ops, file_ops, git_ops
from workspace_ops.ops.registry import ActionRegistry, ActionSpec


def builtin_specs() -> list[ActionSpec]:
    """返回全部内置 action 规格（注册顺序即 `names()` 的顺序）。"""

    return [
        ActionSpec("read", file_ops.read_file, echo_fields=("path",)),
        ActionSpec("write", file_ops.write_file, mutating=True, echo_fields=("path",)),
        ActionSpec("create", file_ops.create_file, mutating=True, echo_fields=("path",)),
        ActionSpec("mkdir", file_ops.make_directory, mutating=True, echo_fields=("path",)),
        ActionSpec("delete", file_ops.delete_path, mutating=True, echo_fields=("path",)),
        ActionSpec("rename", file_ops.rename_path, mutating=True, echo_fields=("oldPath", "newPath")),
        ActionSpec("list", file_ops.list_files, echo_fields=("path",)),
        ActionSpec("git", git_ops.git_command, mutating=True, spawns_process=True),
        ActionSpec("gitStatus", git_ops.git_status_legacy, spawns_process=True),
        ActionSpec("git-status", git_ops.git_status, spawns_process=True, error_extra={"changes": []}),
        ActionSpec("git-diff", git_ops.git_diff, spawns_process=True, error_extra={"diff": ""}),
        ActionSpec("git-commit", git_ops.git_commit, mutating=True, spawns_process=True),
        ActionSpec("git-push", git_ops.git_push, spawns_process=True),
        ActionSpec("git-pull-force", git_ops.git_pull_force, mutating=True, spawns_process=True),
        ActionSpec("exec", exec_ops.exec_command, mutating=True, spawns_process=True, echo_fields=("command",)),
    ]


def register_builtin_actions(registry: ActionRegistry) -> ActionRegistry:
    for spec in builtin_specs():
        registry.register(spec)
    return registry


__all__ = ["builtin_specs", "register_builtin_actions"]
