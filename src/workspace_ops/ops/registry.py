"""
ActionRegistry：action 注册表与执行。

本模块提供：
- 注册：`register(ActionSpec)` / `get(name)` / `names()`
- 执行：`execute(request, ctx) -> dict`（同步；由 dispatcher 放到线程池执行）

约定：
- handler 签名为 `(ActionRequest, OperationContext) -> dict`，成功时返回完整 Response；
- 失败时直接抛异常（`OperationError`/`PathSafetyError`/`OSError`/`ValueError`），
  由 `execute` 统一转换为 `success=false` 的 Response，并回显 `ActionSpec.echo_fields`。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from workspace_ops.core.errors import OperationError, PathSafetyError
from workspace_ops.core.executor import CommandResult
from workspace_ops.core.workspace import Workspace
from workspace_ops.protocol import ActionRequest, error_response
from workspace_ops.safety.paths import check_path

logger = logging.getLogger(__name__)

ActionHandler = Callable[[ActionRequest, "OperationContext"], Dict[str, Any]]


@dataclass(frozen=True)
class ActionSpec:
    """
    action 规格。

    字段：
    - name：action 名（协议中的 `action` 值）
    - handler：执行函数
    - mutating：是否修改工作区（用于可选的工作区级串行化）
    - spawns_process：是否启动子进程（git/exec；在独立线程池中执行）
    - echo_fields：失败响应需要回显的请求字段（使用协议字段名，如 `oldPath`）
    - error_extra：失败响应附加的固定字段（例如 `diff: ""`）
    """

    name: str
    handler: ActionHandler
    mutating: bool = False
    spawns_process: bool = False
    echo_fields: Tuple[str, ...] = ()
    error_extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OperationContext:
    """
    handler 执行上下文（每条消息一份，由 dispatcher 构造）。

    字段：
    - workspace：共享的工作区能力对象
    - username：当前连接的用户名（仅用于日志）
    - visible_dot_entries / skip_names：目录列举规则
    - exec_timeout_ms：exec action 的超时
    - git_timeout_ms：git 子进程超时（None 表示不限时）
    """

    workspace: Workspace
    username: str = "unknown"
    visible_dot_entries: Sequence[str] = (".astro", ".devcontainer")
    skip_names: Sequence[str] = ("node_modules", "dist", ".git")
    exec_timeout_ms: int = 120_000
    git_timeout_ms: Optional[int] = None

    def resolve(self, relative: Optional[str], *, message: str = "Invalid file path") -> Path:
        """校验相对路径并拼接到工作区 root 下；不安全时抛 `PathSafetyError`。"""

        return self.workspace.path(check_path(relative, message=message))

    def run_git(self, args: List[str]) -> CommandResult:
        """在工作区 root 下执行 `git <args...>`（argv 形式，不经过 shell）。"""

        return self.workspace.executor.run_command(
            ["git", *args], cwd=self.workspace.root, timeout_ms=self.git_timeout_ms
        )

    def run_shell(self, command: str, *, timeout_ms: Optional[int] = None) -> CommandResult:
        """在工作区 root 下以 shell 执行命令字符串。"""

        return self.workspace.executor.run_shell(command, cwd=self.workspace.root, timeout_ms=timeout_ms)


class ActionRegistry:
    """action 注册表。"""

    def __init__(self) -> None:
        self._specs: Dict[str, ActionSpec] = {}

    def register(self, spec: ActionSpec, *, override: bool = False) -> None:
        """注册 action；重复注册且未显式 override 时抛 ValueError。"""

        if spec.name in self._specs and not override:
            raise ValueError(f"duplicate action: {spec.name}")
        self._specs[spec.name] = spec

    def get(self, name: str) -> Optional[ActionSpec]:
        return self._specs.get(name)

    def names(self) -> List[str]:
        """按注册顺序返回 action 名。"""

        return list(self._specs)

    def execute(self, spec: ActionSpec, request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
        """
        执行一个 action，并把异常转换为失败 Response。

        返回：
        - 总是返回一个 Response dict（不向上抛异常）
        """

        try:
            return spec.handler(request, ctx)
        except PathSafetyError as e:
            logger.warning("Path rejected: %r (user: %s, action: %s)", e.path, ctx.username, spec.name)
            return self._failure(spec, request, str(e))
        except OperationError as e:
            logger.info("[%s] %s failed: %s", ctx.username, spec.name, e)
            return self._failure(spec, request, str(e), e.fields)
        except (OSError, ValueError) as e:
            logger.info("[%s] %s failed: %s", ctx.username, spec.name, e)
            return self._failure(spec, request, str(e))
        except Exception as e:
            logger.exception("[%s] unexpected error in action %s", ctx.username, spec.name)
            return self._failure(spec, request, str(e) or e.__class__.__name__)

    def _failure(
        self,
        spec: ActionSpec,
        request: ActionRequest,
        error: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        fields = request.model_dump(by_alias=True)
        payload: Dict[str, Any] = {name: fields.get(name) for name in spec.echo_fields}
        payload.update(spec.error_extra)
        payload.update(extra or {})
        return error_response(spec.name, error, **payload)
