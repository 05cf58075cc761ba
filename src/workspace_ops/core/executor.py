"""
Executor（子进程执行原语）。

本模块是 git/exec 两组 handler 唯一的“进程执行”入口：
- `Executor.run_command(argv, ...)`：执行 argv 命令（不经过 shell）
- `Executor.run_shell(command, ...)`：以 `/bin/sh -c` 执行一条命令字符串
- 标准化 `CommandResult`：stdout/stderr/exit_code/timeout/truncated/error_kind

说明：
- 执行是同步阻塞的；server 侧在专用的子进程线程池中调用（与文件操作的线程池分开），避免阻塞事件循环与文件操作。
- stdout/stderr 分别做“尾部保留”截断，避免大输出撑爆内存（以及单条 WebSocket 消息）。
- 本类不做命令白名单判断（该职责属于 `workspace_ops.safety.commands`）。
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CommandResult(BaseModel):
    """
    命令执行结果（结构化）。

    字段说明：
    - ok：exit_code==0 且未超时
    - exit_code：进程退出码；超时时为 None
    - stdout/stderr：捕获到的输出（可能被截断，保留尾部）
    - timeout：是否因超时被终止
    - error_kind：timeout|exit_code|not_found|validation|unknown
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = Field(default=0, ge=0)
    timeout: bool = False
    truncated: bool = False
    error_kind: Optional[str] = None

    def output(self) -> str:
        """返回“主要输出”：stdout 非空取 stdout，否则取 stderr（git push 等命令把进度写到 stderr）。"""

        return self.stdout or self.stderr

    def describe_failure(self, command: str) -> str:
        """
        生成面向客户端的失败描述。

        参数：
        - command：用于展示的命令文本

        返回：
        - 单行/多行英文错误字符串（包含 stderr 尾部，便于排障）
        """

        if self.timeout:
            head = f"Command timed out after {self.duration_ms}ms: {command}"
        elif self.error_kind == "not_found":
            head = f"Command not found: {command}"
        elif self.exit_code is not None:
            head = f"Command failed with exit code {self.exit_code}: {command}"
        else:
            head = f"Command failed: {command}"
        detail = (self.stderr or self.stdout).strip()
        return f"{head}\n{detail}" if detail else head


class _TailBuffer:
    """保留尾部的有界字节缓冲。"""

    def __init__(self, max_bytes: int) -> None:
        self._max_bytes = max_bytes
        self._buf = bytearray()
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        """追加字节；超出上限时丢弃头部。"""

        if not chunk:
            return
        self._buf.extend(chunk)
        overflow = len(self._buf) - self._max_bytes
        if overflow > 0:
            del self._buf[:overflow]
            self.truncated = True

    def text(self) -> str:
        return bytes(self._buf).decode("utf-8", errors="replace")


def _drain(stream, buf: _TailBuffer) -> None:  # type: ignore[no-untyped-def]
    """后台线程：持续读取子进程输出流直到 EOF。"""

    if stream is None:
        return
    while True:
        try:
            chunk = stream.read(4096)
        except (OSError, ValueError):
            return
        if not chunk:
            return
        buf.append(chunk)


class Executor:
    """
    子进程执行器。

    参数：
    - max_output_bytes：stdout/stderr 各自保留的最大字节数（尾部保留）
    - terminate_grace_ms：超时后 SIGTERM→SIGKILL 的宽限时间
    - shell：`run_shell` 使用的 shell 可执行文件
    """

    def __init__(
        self,
        *,
        max_output_bytes: int = 4 * 1024 * 1024,
        terminate_grace_ms: int = 500,
        shell: str = "/bin/sh",
        truncate_marker: str = "...<truncated>\n",
    ) -> None:
        if max_output_bytes < 1:
            raise ValueError("max_output_bytes must be >= 1")
        if terminate_grace_ms < 0:
            raise ValueError("terminate_grace_ms must be >= 0")
        self._max_output_bytes = max_output_bytes
        self._terminate_grace_ms = terminate_grace_ms
        self._shell = shell
        self._truncate_marker = truncate_marker

    def run_command(
        self,
        argv: list[str],
        *,
        cwd: Path,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        """
        执行 argv 命令并捕获结果。

        参数：
        - argv：命令与参数（至少 1 项）
        - cwd：工作目录（必须存在）
        - timeout_ms：超时毫秒数；None 表示不限时（git 操作默认如此）

        返回：
        - `CommandResult`
        """

        start = time.monotonic()
        if not argv:
            return CommandResult(ok=False, stderr="argv must not be empty", error_kind="validation")
        cwd_path = Path(cwd)
        if not cwd_path.is_dir():
            return CommandResult(ok=False, stderr=f"cwd is not a directory: {cwd_path}", error_kind="validation")

        popen_kwargs: dict = {
            "cwd": str(cwd_path),
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
        }
        # 让超时 kill 能覆盖整个进程组（npm/pm2 会派生子进程）。
        if os.name != "nt":
            popen_kwargs["start_new_session"] = True
        else:
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]

        try:
            proc = subprocess.Popen(argv, **popen_kwargs)  # noqa: S603
        except FileNotFoundError as e:
            return CommandResult(
                ok=False,
                stderr=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
                error_kind="not_found",
            )
        except OSError as e:
            return CommandResult(
                ok=False,
                stderr=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
                error_kind="unknown",
            )

        out_buf = _TailBuffer(self._max_output_bytes)
        err_buf = _TailBuffer(self._max_output_bytes)
        readers = [
            threading.Thread(target=_drain, args=(proc.stdout, out_buf), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, err_buf), daemon=True),
        ]
        for t in readers:
            t.start()

        timed_out = False
        try:
            proc.wait(timeout=None if timeout_ms is None else timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            timed_out = True
            self._terminate(proc)
        finally:
            for t in readers:
                t.join(timeout=1.0)
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()

        truncated = out_buf.truncated or err_buf.truncated
        stdout_text = out_buf.text()
        stderr_text = err_buf.text()
        if out_buf.truncated:
            stdout_text = self._truncate_marker + stdout_text
        if err_buf.truncated:
            stderr_text = self._truncate_marker + stderr_text

        duration_ms = int((time.monotonic() - start) * 1000)
        if timed_out:
            return CommandResult(
                ok=False,
                stdout=stdout_text,
                stderr=stderr_text,
                duration_ms=duration_ms,
                timeout=True,
                truncated=truncated,
                error_kind="timeout",
            )

        ok = proc.returncode == 0
        return CommandResult(
            ok=ok,
            exit_code=proc.returncode,
            stdout=stdout_text,
            stderr=stderr_text,
            duration_ms=duration_ms,
            truncated=truncated,
            error_kind=None if ok else "exit_code",
        )

    def run_shell(
        self,
        command: str,
        *,
        cwd: Path,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        """以 shell 执行一条命令字符串（`<shell> -c <command>`）。"""

        return self.run_command([self._shell, "-c", command], cwd=cwd, timeout_ms=timeout_ms)

    def _terminate(self, proc: subprocess.Popen) -> None:
        """超时终止：SIGTERM（进程组）→ 宽限 → SIGKILL。"""

        if os.name == "nt":
            proc.terminate()
            try:
                proc.wait(timeout=self._terminate_grace_ms / 1000.0)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            return

        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=self._terminate_grace_ms / 1000.0)
            return
        except subprocess.TimeoutExpired:
            pass
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()
