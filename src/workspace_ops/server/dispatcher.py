"""
ActionDispatcher：把一条入站消息变成（至多）一条出站 Response。

处理顺序：
1) 解码：非法 JSON / 根节点不是 object → `{"action": "error", ...}`
2) `ping` → `{"action": "pong"}`（不做路径校验）
3) 请求携带的 `path` / `file` 不安全 → `Invalid file path`（安全事件，WARNING）
4) 字段类型校验（pydantic）
5) 查找 action；未知 action 按 `protocol.unknown_action` 回包或忽略
6) 在线程池中执行 handler：文件操作与子进程操作各用一个池；可选地，写类操作持有工作区锁，
   且锁一直保持到工作线程结束（请求被取消时也一样）
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Sequence, Union

from pydantic import ValidationError

from workspace_ops.config.loader import WorkspaceOpsConfig
from workspace_ops.core.workspace import Workspace
from workspace_ops.ops.registry import ActionRegistry, OperationContext
from workspace_ops.protocol import (
    ActionRequest,
    ProtocolError,
    decode_message,
    error_response,
    protocol_error_response,
)
from workspace_ops.safety.paths import is_path_safe

logger = logging.getLogger(__name__)

# 在分发前统一校验的路径字段（rename 的 oldPath/newPath 由 handler 单独校验，错误文本不同）。
PRECHECKED_PATH_FIELDS = ("path", "file")


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "request"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "Invalid request: " + "; ".join(parts)


class ActionDispatcher:
    """
    action 分发器（所有连接共享一个实例）。

    参数：
    - registry：已注册 action 的注册表
    - workspace：工作区
    - unknown_action：`reply` 回包失败；`ignore` 只记录日志
    - file_workers / process_workers：文件操作与子进程操作（git/exec）各自的线程数
    """

    def __init__(
        self,
        registry: ActionRegistry,
        workspace: Workspace,
        *,
        unknown_action: str = "reply",
        visible_dot_entries: Sequence[str] = (".astro", ".devcontainer"),
        skip_names: Sequence[str] = ("node_modules", "dist", ".git"),
        exec_timeout_ms: int = 120_000,
        git_timeout_ms: Optional[int] = None,
        file_workers: int = 8,
        process_workers: int = 16,
    ) -> None:
        if unknown_action not in ("reply", "ignore"):
            raise ValueError(f"unknown_action must be 'reply' or 'ignore', got {unknown_action!r}")
        self._registry = registry
        self._workspace = workspace
        self._unknown_action = unknown_action
        self._visible_dot_entries = tuple(visible_dot_entries)
        self._skip_names = tuple(skip_names)
        self._exec_timeout_ms = exec_timeout_ms
        self._git_timeout_ms = git_timeout_ms
        self._file_pool = ThreadPoolExecutor(max_workers=file_workers, thread_name_prefix="workspace-ops-file")
        self._process_pool = ThreadPoolExecutor(max_workers=process_workers, thread_name_prefix="workspace-ops-proc")

    @classmethod
    def from_config(cls, config: WorkspaceOpsConfig, registry: ActionRegistry, workspace: Workspace) -> "ActionDispatcher":
        return cls(
            registry,
            workspace,
            unknown_action=config.protocol.unknown_action,
            visible_dot_entries=config.listing.visible_dot_entries,
            skip_names=config.listing.skip_names,
            exec_timeout_ms=config.exec.timeout_ms,
            git_timeout_ms=config.git.timeout_ms,
            file_workers=config.server.file_workers,
            process_workers=config.server.process_workers,
        )

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    def close(self) -> None:
        """释放线程池（不等待仍在运行的 handler）。"""

        self._file_pool.shutdown(wait=False, cancel_futures=True)
        self._process_pool.shutdown(wait=False, cancel_futures=True)

    def make_context(self, username: str) -> OperationContext:
        return OperationContext(
            workspace=self._workspace,
            username=username,
            visible_dot_entries=self._visible_dot_entries,
            skip_names=self._skip_names,
            exec_timeout_ms=self._exec_timeout_ms,
            git_timeout_ms=self._git_timeout_ms,
        )

    async def dispatch(self, raw: Union[str, bytes], *, username: str = "unknown") -> Optional[Dict[str, Any]]:
        """
        处理一条入站消息。

        参数：
        - raw：文本或二进制帧
        - username：连接身份（日志用）

        返回：
        - 要发送的 Response；`ignore` 模式下的未知 action 返回 None
        """

        try:
            data = decode_message(raw)
        except ProtocolError as e:
            logger.warning("[%s] Error handling message: %s", username, e)
            return protocol_error_response(str(e))

        action = data.get("action")
        if action == "ping":
            return {"action": "pong"}

        for name in PRECHECKED_PATH_FIELDS:
            value = data.get(name)
            if value is not None and not is_path_safe(value):
                logger.warning("Blocked unsafe path: %r (user: %s, action: %s)", value, username, action)
                return error_response(action, "Invalid file path", **{name: value})

        try:
            request = ActionRequest.model_validate(data)
        except ValidationError as e:
            logger.info("[%s] Rejected malformed request for action %r", username, action)
            return error_response(action, _format_validation_error(e))

        spec = self._registry.get(request.action)
        if spec is None:
            logger.info("[%s] Unknown action: %s", username, request.action)
            if self._unknown_action == "ignore":
                return None
            return error_response(request.action, f"Unsupported action: {request.action}")

        ctx = self.make_context(username)
        pool = self._process_pool if spec.spawns_process else self._file_pool
        async with self._workspace.mutation_guard(spec.mutating):
            future = asyncio.get_running_loop().run_in_executor(pool, self._registry.execute, spec, request, ctx)
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                # 工作线程无法中断；持锁时等它结束再释放锁。
                if self._workspace.guards(spec.mutating):
                    await asyncio.wait([future])
                raise
