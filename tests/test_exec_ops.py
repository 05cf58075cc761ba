from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from workspace_ops.core.executor import CommandResult, Executor
from workspace_ops.core.workspace import Workspace
from workspace_ops.ops.builtin import register_builtin_actions
from workspace_ops.ops.registry import ActionRegistry, OperationContext
from workspace_ops.protocol import ActionRequest


class _RecordingExecutor(Executor):
    """不真正起进程：记录命令并返回预设结果。"""

    def __init__(self, result: CommandResult) -> None:
        super().__init__()
        self.result = result
        self.calls: List[Dict[str, Any]] = []

    def run_shell(
        self,
        command: str,
        *,
        cwd: Path,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        self.calls.append({"command": command, "cwd": cwd, "timeout_ms": timeout_ms})
        return self.result


def _run(root: Path, executor: Executor, *, exec_timeout_ms: int = 120_000, **payload: Any) -> Dict[str, Any]:
    registry = register_builtin_actions(ActionRegistry())
    request = ActionRequest.model_validate(payload)
    spec = registry.get(request.action)
    assert spec is not None
    ctx = OperationContext(
        workspace=Workspace(root=root, executor=executor),
        username="alice",
        exec_timeout_ms=exec_timeout_ms,
    )
    return registry.execute(spec, request, ctx)


def test_exec_requires_command(tmp_path: Path) -> None:
    ex = _RecordingExecutor(CommandResult(ok=True, exit_code=0))
    out = _run(tmp_path, ex, action="exec")
    assert out == {"action": "exec", "command": None, "success": False, "error": "Command is required"}
    assert ex.calls == []


def test_exec_rejects_unlisted_command_before_running(tmp_path: Path) -> None:
    ex = _RecordingExecutor(CommandResult(ok=True, exit_code=0))
    out = _run(tmp_path, ex, action="exec", command="echo hi")
    assert out == {
        "action": "exec",
        "command": "echo hi",
        "success": False,
        "error": "Command not allowed for security reasons",
    }
    assert ex.calls == []


def test_exec_runs_allowed_command_in_workspace_with_timeout(tmp_path: Path) -> None:
    ex = _RecordingExecutor(CommandResult(ok=True, exit_code=0, stdout="", stderr="built in 2s\n"))
    out = _run(tmp_path, ex, exec_timeout_ms=5000, action="exec", command="npm run build")
    assert out == {"action": "exec", "command": "npm run build", "output": "built in 2s\n", "success": True}
    assert ex.calls == [{"command": "npm run build", "cwd": tmp_path.resolve(), "timeout_ms": 5000}]


def test_exec_failure_carries_partial_output(tmp_path: Path) -> None:
    ex = _RecordingExecutor(CommandResult(ok=False, timeout=True, duration_ms=5000, stdout="added 3 packages\n", error_kind="timeout"))
    command = "cd /workspaces/site && npm install react"
    out = _run(tmp_path, ex, action="exec", command=command)
    assert out["success"] is False
    assert out["command"] == command
    assert out["output"] == "added 3 packages\n"
    assert out["error"].startswith("Command timed out after 5000ms")


def test_exec_real_process_nonzero_exit(tmp_path: Path) -> None:
    """npm run 前缀匹配后交给 shell；用一个必然失败的脚本名验证非零退出。"""

    ex = Executor()
    out = _run(tmp_path, ex, exec_timeout_ms=60_000, action="exec", command="npm run __definitely_missing_script__ || exit 7")
    assert out["success"] is False
    assert out["command"].startswith("npm run")
    assert "exit code 7" in out["error"]
