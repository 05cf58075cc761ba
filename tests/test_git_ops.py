from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict

import pytest

from workspace_ops.core.workspace import Workspace
from workspace_ops.ops.builtin import register_builtin_actions
from workspace_ops.ops.builtin.git_ops import classify_status, parse_porcelain
from workspace_ops.ops.registry import ActionRegistry, OperationContext
from workspace_ops.protocol import ActionRequest

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture(autouse=True)
def _isolated_git_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(key, "Test User")
    for key in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(key, "test@example.com")


def _git(cwd: Path, *args: str) -> str:
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True).stdout


def _mk_repo(tmp_path: Path) -> Path:
    """创建带一个初始提交、并已推送到本地 bare origin 的工作仓库。"""

    remote = tmp_path / "remote.git"
    work = tmp_path / "work"
    remote.mkdir()
    work.mkdir()
    _git(remote, "init", "-q", "--bare")
    _git(work, "init", "-q")
    _git(work, "symbolic-ref", "HEAD", "refs/heads/main")
    (work / "a.txt").write_text("one\n", encoding="utf-8")
    (work / "gone.txt").write_text("bye\n", encoding="utf-8")
    _git(work, "add", "-A")
    _git(work, "commit", "-q", "-m", "initial")
    _git(work, "remote", "add", "origin", str(remote))
    _git(work, "push", "-q", "-u", "origin", "main")
    return work


def _run(root: Path, **payload: Any) -> Dict[str, Any]:
    registry = register_builtin_actions(ActionRegistry())
    request = ActionRequest.model_validate(payload)
    spec = registry.get(request.action)
    assert spec is not None
    return registry.execute(spec, request, OperationContext(workspace=Workspace(root=root), username="alice"))


def test_classify_status_priority() -> None:
    assert classify_status("??") == "untracked"
    assert classify_status("A ") == "added"
    assert classify_status("AD") == "added"
    assert classify_status(" D") == "deleted"
    assert classify_status("R ") == "renamed"
    assert classify_status(" M") == "modified"
    assert classify_status("UU") == "modified"


def test_parse_porcelain_keeps_leading_status_space() -> None:
    changes = parse_porcelain(" M src/a.ts\n?? new.txt\n\n")
    assert changes == [
        {"file": "src/a.ts", "status": " M", "type": "modified"},
        {"file": "new.txt", "status": "??", "type": "untracked"},
    ]


@needs_git
def test_git_status_reports_each_change_kind(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    (work / "a.txt").write_text("two\n", encoding="utf-8")
    (work / "gone.txt").unlink()
    (work / "new.txt").write_text("n\n", encoding="utf-8")
    (work / "staged.txt").write_text("s\n", encoding="utf-8")
    _git(work, "add", "staged.txt")

    out = _run(work, action="git-status")
    assert out["success"] is True
    by_file = {c["file"]: c for c in out["changes"]}
    assert by_file["a.txt"] == {"file": "a.txt", "status": " M", "type": "modified"}
    assert by_file["gone.txt"]["type"] == "deleted"
    assert by_file["new.txt"]["type"] == "untracked"
    assert by_file["staged.txt"]["type"] == "added"


@needs_git
def test_git_status_outside_repository(tmp_path: Path) -> None:
    out = _run(tmp_path, action="git-status")
    assert out["success"] is False
    assert out["changes"] == []
    assert out["error"]

    legacy = _run(tmp_path, action="gitStatus")
    assert legacy == {"action": "gitStatus", "changes": 0, "files": [], "success": True}


@needs_git
def test_legacy_git_status_counts_lines(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    (work / "a.txt").write_text("two\n", encoding="utf-8")
    (work / "x.txt").write_text("x\n", encoding="utf-8")

    out = _run(work, action="gitStatus")
    assert out["success"] is True
    assert out["changes"] == 2
    assert sorted(out["files"]) == sorted([" M a.txt", "?? x.txt"])


@needs_git
def test_generic_git_runs_allowed_subcommand(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    out = _run(work, action="git", command="log --oneline")
    assert out["success"] is True
    assert "initial" in out["stdout"]
    assert "stderr" in out


def test_generic_git_rejects_disallowed_subcommand(tmp_path: Path) -> None:
    marker = tmp_path / "marker"
    marker.write_text("x", encoding="utf-8")
    out = _run(tmp_path, action="git", command="rm -rf /")
    assert out == {"action": "git", "success": False, "error": "Git command not allowed"}
    assert marker.exists()


@needs_git
def test_git_diff_for_single_file(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    (work / "a.txt").write_text("one\nadded line\n", encoding="utf-8")

    out = _run(work, action="git-diff", file="a.txt")
    assert out["success"] is True
    assert out["file"] == "a.txt"
    assert "+added line" in out["diff"]


def test_git_diff_requires_file(tmp_path: Path) -> None:
    out = _run(tmp_path, action="git-diff")
    assert out == {"action": "git-diff", "diff": "", "success": False, "error": "File path is required for git-diff"}


def test_git_diff_rejects_unsafe_file(tmp_path: Path) -> None:
    out = _run(tmp_path, action="git-diff", file="../../etc/passwd")
    assert out["success"] is False
    assert out["error"] == "Invalid file path"
    assert out["diff"] == ""


@needs_git
def test_git_commit_stages_everything(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    (work / "new.txt").write_text("n\n", encoding="utf-8")
    message = 'feat: add "quoted" $HOME `file`'

    out = _run(work, action="git-commit", message=message)
    assert out["success"] is True
    assert out["message"] == message
    assert _git(work, "log", "-1", "--format=%s").strip() == message
    assert _git(work, "status", "--porcelain") == ""


def test_git_commit_requires_message(tmp_path: Path) -> None:
    out = _run(tmp_path, action="git-commit")
    assert out == {"action": "git-commit", "success": False, "error": "Commit message is required"}


@needs_git
def test_git_commit_with_nothing_to_commit_fails(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    out = _run(work, action="git-commit", message="noop")
    assert out["success"] is False
    assert "exit code" in out["error"]


@needs_git
def test_git_push_to_origin(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    (work / "b.txt").write_text("b\n", encoding="utf-8")
    _git(work, "add", "-A")
    _git(work, "commit", "-q", "-m", "second")

    out = _run(work, action="git-push")
    assert out["success"] is True
    assert isinstance(out["output"], str)
    assert _git(tmp_path / "remote.git", "log", "-1", "--format=%s", "main").strip() == "second"


@needs_git
def test_git_pull_force_discards_local_changes(tmp_path: Path) -> None:
    work = _mk_repo(tmp_path)
    (work / "a.txt").write_text("local edit\n", encoding="utf-8")

    out = _run(work, action="git-pull-force")
    assert out["success"] is True
    assert out["branch"] == "main"
    assert "HEAD is now at" in out["output"]
    assert (work / "a.txt").read_text(encoding="utf-8") == "one\n"


@needs_git
def test_git_pull_force_without_origin_fails(tmp_path: Path) -> None:
    work = tmp_path / "lonely"
    work.mkdir()
    _git(work, "init", "-q")
    out = _run(work, action="git-pull-force")
    assert out["success"] is False
    assert "git fetch origin" in out["error"]
