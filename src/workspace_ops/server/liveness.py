"""
心跳存活检测（Liveness Monitor）。

每个连接一个监视器：
- 周期性检查 `is_alive`：为 False 说明上一次 ping 没有收到 pong → 直接中止底层传输（TCP abort）；
- 否则把 `is_alive` 置为 False 并发送一次传输层 ping，收到 pong 时置回 True。

说明：
- 第一次检查发生在连接建立一个周期之后；
- 监视器只依赖 `HeartbeatTransport` 协议，便于用假传输测试。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Protocol

logger = logging.getLogger(__name__)


class HeartbeatTransport(Protocol):
    """心跳所需的最小传输能力。"""

    async def ping(self) -> Awaitable[Any]:
        """发送 ping，返回一个在收到对应 pong 时完成的 awaitable。"""

    def terminate(self) -> None:
        """立即中止连接（不走关闭握手）。"""


class LivenessMonitor:
    """
    单连接心跳监视器。

    参数：
    - transport：心跳传输
    - interval_sec：检查间隔（秒）
    - label：日志中标识连接的文本
    """

    def __init__(self, transport: HeartbeatTransport, *, interval_sec: float, label: str = "") -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be > 0")
        self._transport = transport
        self._interval_sec = float(interval_sec)
        self._label = label
        self._task: Optional[asyncio.Task[None]] = None
        self.is_alive = True
        self.terminated = False

    def mark_alive(self) -> None:
        self.is_alive = True

    def start(self) -> None:
        """在当前事件循环中启动周期检查（重复调用无副作用）。"""

        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """停止周期检查并等待后台任务退出。"""

        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def tick(self) -> bool:
        """
        执行一次检查。

        返回：
        - True：连接仍被认为存活（已发出新的 ping）
        - False：连接已被中止或 ping 发送失败，监视应停止
        """

        if not self.is_alive:
            logger.info("Heartbeat missed, terminating connection %s", self._label)
            self.terminated = True
            self._transport.terminate()
            return False
        self.is_alive = False
        try:
            waiter = await self._transport.ping()
        except Exception as e:
            logger.debug("Heartbeat ping failed for %s: %s", self._label, e)
            return False
        fut = asyncio.ensure_future(waiter)
        fut.add_done_callback(self._on_pong)
        return True

    def _on_pong(self, fut: "asyncio.Future[Any]") -> None:
        if fut.cancelled() or fut.exception() is not None:
            return
        self.mark_alive()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_sec)
            if not await self.tick():
                return
