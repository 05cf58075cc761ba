"""
受限命令执行（exec action）。

只放行固定白名单正则命中的命令（依赖安装、pm2 进程管理、按名称 kill、npm run）；
命令以 shell 执行，cwd 为工作区 root，带超时（默认 120s）。
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from workspace_ops.core.errors import OperationError
from workspace_ops.ops.registry import OperationContext
from workspace_ops.protocol import ActionRequest, success_response
from workspace_ops.safety.commands import evaluate_exec_command

logger = logging.getLogger(__name__)


def exec_command(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """
    执行白名单命令。

    返回：
    - 成功：`{action, success, command, output}`（output 取 stdout，为空时取 stderr）

    异常：
    - OperationError：缺少 command / 未命中白名单 / 超时或非零退出（携带已产生的部分 output）
    """

    command = request.command
    if not command:
        raise OperationError("Command is required")
    decision = evaluate_exec_command(command)
    if not decision.allowed:
        logger.warning("[%s] Blocked exec command: %r", ctx.username, command)
        raise OperationError("Command not allowed for security reasons")

    result = ctx.run_shell(command, timeout_ms=ctx.exec_timeout_ms)
    if not result.ok:
        logger.error("[%s] Exec failed: %s", ctx.username, command)
        raise OperationError(result.describe_failure(command), fields={"output": result.output()})
    logger.info("[%s] Exec: %s", ctx.username, command)
    return success_response("exec", command=command, output=result.output())
