from __future__ import annotations

import pytest

from workspace_ops.safety.commands import evaluate_exec_command, evaluate_git_command


@pytest.mark.parametrize("command", ["status", "log --oneline -5", "checkout -b feature", "stash pop", "diff HEAD~1"])
def test_git_allowed_subcommands(command: str) -> None:
    decision = evaluate_git_command(command)
    assert decision.allowed is True
    assert decision.matched_rule == command.split()[0]


@pytest.mark.parametrize("command", ["rm -rf /", "reset --hard", "config user.name x", "clean -fdx", "", "   "])
def test_git_disallowed_subcommands(command: str) -> None:
    assert evaluate_git_command(command).allowed is False


def test_git_filter_only_inspects_first_token() -> None:
    """白名单只是粗粒度过滤：后续参数不做校验。"""

    assert evaluate_git_command("status; echo pwned").allowed is False
    assert evaluate_git_command("status && echo pwned").allowed is True


@pytest.mark.parametrize(
    "command",
    [
        "cd /workspaces/site && npm install react",
        "cd /workspaces/site && npm i -D typescript",
        "pm2 restart dev",
        "pm2 reload all",
        "pkill -f astro",
        "npm run build",
    ],
)
def test_exec_allowed_patterns(command: str) -> None:
    decision = evaluate_exec_command(command)
    assert decision.allowed is True
    assert decision.matched_rule


@pytest.mark.parametrize(
    "command",
    [
        "echo hi",
        "npm install react",
        "cd /tmp && npm install x",
        "cd /workspaces/a; rm -rf / && npm install x",
        "pm2 delete all",
        "npm run",
        "sudo npm run build",
        "",
    ],
)
def test_exec_disallowed_commands(command: str) -> None:
    assert evaluate_exec_command(command).allowed is False
