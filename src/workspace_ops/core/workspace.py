"""
Workspace（工作区能力对象）。

所有连接共享同一个工作目录与其 git 状态；本对象把这份“全局可变资源”显式化：
- `root`：文件与 git 操作的唯一锚点目录
- `executor`：子进程执行原语
- `mutation_lock`：可选的工作区级互斥（`serialize_mutations=true` 时启用）

说明：
- 默认不加锁，与“多连接并发操作同一工作树”的既有行为一致；
  并发写同一路径、commit 与 reset 同时发生等竞态属于已知的一致性限制。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

from workspace_ops.core.executor import Executor

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """
    工作区。

    字段：
    - root：绝对路径
    - executor：git/exec handler 使用的执行器
    - style_trigger_path：写入前端源码后需要 touch 的样式文件（相对 root）
    - style_trigger_extensions：触发 touch 的文件扩展名
    - serialize_mutations：是否对写类操作加工作区级锁
    """

    root: Path
    executor: Executor = field(default_factory=Executor)
    style_trigger_path: str = "src/styles/global.css"
    style_trigger_extensions: Sequence[str] = (".astro", ".tsx", ".jsx", ".html", ".mdx", ".md", ".vue", ".svelte")
    serialize_mutations: bool = False
    _lock: Optional[asyncio.Lock] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root).resolve()

    def path(self, relative: str) -> Path:
        """把已通过安全校验的相对路径拼接到 root 下（不做 resolve）。"""

        return self.root / relative

    def touch_style_trigger(self, written_path: str) -> bool:
        """
        若 written_path 的扩展名命中触发集合，更新样式文件的 mtime。

        返回：
        - 是否实际 touch 成功（样式文件不存在时返回 False，不抛异常）
        """

        if not any(written_path.endswith(ext) for ext in self.style_trigger_extensions):
            return False
        try:
            os.utime(self.path(self.style_trigger_path), None)
        except OSError:
            logger.debug("style trigger %s not touched", self.style_trigger_path)
            return False
        return True

    def guards(self, mutating: bool) -> bool:
        """该类操作是否需要持有工作区锁。"""

        return mutating and self.serialize_mutations

    @contextlib.asynccontextmanager
    async def mutation_guard(self, mutating: bool) -> AsyncIterator[None]:
        """写类操作的可选串行化；未启用或只读操作时为空操作。"""

        if not self.guards(mutating):
            yield
            return
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            yield
