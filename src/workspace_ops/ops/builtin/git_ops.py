"""
git 操作 handler。

说明：
- 所有 git 子进程都以工作区 root 为 cwd，经由 `Executor` 执行；
- 通用 `git` action 只校验子命令（第一个 token），其余参数原样交给 shell；
- 其余固定命令使用 argv 形式执行（文件名/提交信息不经过 shell 引号拼接）；
- 子进程失败（非零退出、超时、git 不存在）统一抛 `OperationError`，错误文本由 `CommandResult.describe_failure` 生成。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from workspace_ops.core.errors import OperationError
from workspace_ops.core.executor import CommandResult
from workspace_ops.ops.registry import OperationContext
from workspace_ops.protocol import ActionRequest, success_response
from workspace_ops.safety.commands import evaluate_git_command
from workspace_ops.safety.paths import check_path

logger = logging.getLogger(__name__)

STATUS_ARGS = ["status", "--porcelain"]


def _check(result: CommandResult, display: str) -> CommandResult:
    if not result.ok:
        raise OperationError(result.describe_failure(display))
    return result


def _run_git(ctx: OperationContext, args: List[str]) -> CommandResult:
    return _check(ctx.run_git(args), " ".join(["git", *args]))


def _status_lines(stdout: str) -> List[str]:
    """porcelain 输出按行拆分（丢弃空行；保留行首空格，它是状态码的一部分）。"""

    return [line for line in stdout.splitlines() if line]


def classify_status(status: str) -> str:
    """
    把 porcelain 两位状态码映射为变更类型。

    优先级：`?` → untracked，`A` → added，`D` → deleted，`R` → renamed，其余 → modified。
    """

    if "?" in status:
        return "untracked"
    if "A" in status:
        return "added"
    if "D" in status:
        return "deleted"
    if "R" in status:
        return "renamed"
    return "modified"


def parse_porcelain(stdout: str) -> List[Dict[str, str]]:
    """解析 `git status --porcelain` 输出为 `[{file, status, type}, ...]`。"""

    changes: List[Dict[str, str]] = []
    for line in _status_lines(stdout):
        status = line[:2]
        changes.append({"file": line[3:], "status": status, "type": classify_status(status)})
    return changes


def git_command(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """
    执行白名单内的任意 git 子命令。

    返回：
    - 成功：`{action, success, stdout, stderr}`
    - 子命令不在白名单：失败 `Git command not allowed`（不执行任何进程）
    """

    command = request.command
    if not command:
        raise OperationError("Command is required")
    decision = evaluate_git_command(command)
    if not decision.allowed:
        logger.warning("[%s] Blocked git command: %r (%s)", ctx.username, command, decision.reason)
        raise OperationError("Git command not allowed")
    display = f"git {command}"
    result = _check(ctx.run_shell(display, timeout_ms=ctx.git_timeout_ms), display)
    logger.info("[%s] Git: %s", ctx.username, command)
    return success_response("git", stdout=result.stdout, stderr=result.stderr)


def git_status(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    result = _run_git(ctx, STATUS_ARGS)
    changes = parse_porcelain(result.stdout)
    logger.info("[%s] Git status: %d changes", ctx.username, len(changes))
    return success_response("git-status", changes=changes)


def git_status_legacy(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """
    旧版状态接口：返回变更数量与原始行。

    注意：即使 git 执行失败也返回 `success=true`（`changes=0, files=[]`），老客户端依赖这一行为。
    """

    result = ctx.run_git(STATUS_ARGS)
    if not result.ok:
        logger.info("[%s] gitStatus failed: %s", ctx.username, result.describe_failure("git status --porcelain"))
        return success_response("gitStatus", changes=0, files=[])
    lines = _status_lines(result.stdout)
    return success_response("gitStatus", changes=len(lines), files=lines)


def git_diff(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    if not request.file:
        raise OperationError("File path is required for git-diff")
    path = check_path(request.file)
    result = _run_git(ctx, ["diff", "--", path])
    logger.info("[%s] Git diff: %s", ctx.username, path)
    return success_response("git-diff", file=path, diff=result.stdout)


def git_commit(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """暂存全部变更（`git add -A`）后提交。"""

    message = request.message
    if not message:
        raise OperationError("Commit message is required")
    _run_git(ctx, ["add", "-A"])
    result = _run_git(ctx, ["commit", "-m", message])
    logger.info("[%s] Git commit: %s", ctx.username, message)
    return success_response("git-commit", message=message, output=result.stdout)


def git_push(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    result = _run_git(ctx, ["push"])
    logger.info("[%s] Git push completed", ctx.username)
    return success_response("git-push", output=result.output())


def git_pull_force(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """
    强制与远端同步：fetch origin → 读取当前分支 → `reset --hard origin/<branch>`。

    注意：未提交的本地修改会被丢弃。
    """

    _run_git(ctx, ["fetch", "origin"])
    branch = _run_git(ctx, ["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()
    result = _run_git(ctx, ["reset", "--hard", f"origin/{branch}"])
    logger.info("[%s] Git pull force completed (branch: %s)", ctx.username, branch)
    return success_response("git-pull-force", branch=branch, output=result.output())
