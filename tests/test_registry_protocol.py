from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import pytest

from workspace_ops.core.errors import OperationError
from workspace_ops.core.workspace import Workspace
from workspace_ops.ops.builtin import builtin_specs, register_builtin_actions
from workspace_ops.ops.registry import ActionRegistry, ActionSpec, OperationContext
from workspace_ops.protocol import (
    ActionRequest,
    ProtocolError,
    decode_message,
    encode_message,
    error_response,
    success_response,
)


def _noop(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    return success_response(request.action)


def test_builtin_action_names() -> None:
    registry = register_builtin_actions(ActionRegistry())
    assert registry.names() == [
        "read",
        "write",
        "create",
        "mkdir",
        "delete",
        "rename",
        "list",
        "git",
        "gitStatus",
        "git-status",
        "git-diff",
        "git-commit",
        "git-push",
        "git-pull-force",
        "exec",
    ]
    assert registry.get("ping") is None


def test_read_only_actions_are_not_mutating() -> None:
    mutating = {s.name for s in builtin_specs() if s.mutating}
    assert {"read", "list", "git-status", "gitStatus", "git-diff", "git-push"}.isdisjoint(mutating)
    assert {"write", "delete", "rename", "git-commit", "git-pull-force", "exec"} <= mutating


def test_git_and_exec_actions_run_on_the_process_pool() -> None:
    spawning = {s.name for s in builtin_specs() if s.spawns_process}
    assert spawning == {"git", "gitStatus", "git-status", "git-diff", "git-commit", "git-push", "git-pull-force", "exec"}


def test_duplicate_registration_requires_override() -> None:
    registry = ActionRegistry()
    registry.register(ActionSpec("x", _noop))
    with pytest.raises(ValueError):
        registry.register(ActionSpec("x", _noop))
    registry.register(ActionSpec("x", _noop, mutating=True), override=True)
    spec = registry.get("x")
    assert spec is not None and spec.mutating is True


def test_operation_error_fields_are_merged_into_failure(tmp_path: Path) -> None:
    def _fail(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
        raise OperationError("nope", fields={"output": "partial"})

    registry = ActionRegistry()
    spec = ActionSpec("f", _fail, echo_fields=("command",), error_extra={"extra": 1})
    registry.register(spec)
    request = ActionRequest.model_validate({"action": "f", "command": "c"})
    out = registry.execute(spec, request, OperationContext(workspace=Workspace(root=tmp_path)))
    assert out == {"action": "f", "command": "c", "extra": 1, "output": "partial", "success": False, "error": "nope"}


def test_request_accepts_protocol_aliases_and_extra_fields() -> None:
    req = ActionRequest.model_validate({"action": "rename", "oldPath": "a", "newPath": "b", "clientTag": 3})
    assert req.old_path == "a"
    assert req.new_path == "b"
    assert req.model_dump(by_alias=True)["oldPath"] == "a"


def test_decode_message_rejects_non_objects() -> None:
    assert decode_message('{"action": "ping"}') == {"action": "ping"}
    with pytest.raises(ProtocolError):
        decode_message("[]")
    with pytest.raises(ProtocolError):
        decode_message("{")


def test_response_shapes() -> None:
    assert success_response("write", path="a") == {"action": "write", "path": "a", "success": True}
    assert error_response("write", "boom", path="a") == {"action": "write", "path": "a", "success": False, "error": "boom"}
    assert json.loads(encode_message({"content": "中文"})) == {"content": "中文"}
    assert "中文" in encode_message({"content": "中文"})
