"""
连接会话（Connection）。

一个 `Connection` 对应一个已认证的 WebSocket 连接：
- 身份（用户名仅用于日志）
- 心跳监视器
- 正在处理中的消息任务（同一连接上的消息并发处理，关闭时统一取消）
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Optional, Set

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from workspace_ops.server.auth import Identity
from workspace_ops.server.liveness import LivenessMonitor

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """把 `websockets` 的 ServerConnection 适配为 `HeartbeatTransport`。"""

    def __init__(self, websocket: ServerConnection) -> None:
        self._websocket = websocket

    async def ping(self) -> Awaitable[Any]:
        return await self._websocket.ping()

    def terminate(self) -> None:
        self._websocket.transport.abort()


@dataclass(eq=False)
class Connection:
    """
    已认证连接。

    字段：
    - websocket：底层连接
    - identity：鉴权得到的身份
    - monitor：心跳监视器（由 server 创建并启动）
    """

    websocket: ServerConnection
    identity: Identity
    monitor: Optional[LivenessMonitor] = None
    tasks: Set["asyncio.Task[None]"] = field(default_factory=set)

    @property
    def username(self) -> str:
        return self.identity.username

    @property
    def remote(self) -> str:
        peer = self.websocket.remote_address
        if not peer:
            return "unknown"
        return f"{peer[0]}:{peer[1]}"

    async def send_json(self, text: str) -> bool:
        """发送一条文本帧；连接已关闭时丢弃并返回 False。"""

        try:
            await self.websocket.send(text)
        except ConnectionClosed:
            logger.debug("[%s] connection closed before response could be sent", self.username)
            return False
        return True

    def spawn(self, coro: Awaitable[None]) -> "asyncio.Task[None]":
        """为一条入站消息创建处理任务，并在完成后自动移出集合。"""

        task: asyncio.Task[None] = asyncio.ensure_future(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    async def close(self) -> None:
        """连接结束：停止心跳并取消仍在处理中的消息任务。"""

        if self.monitor is not None:
            await self.monitor.stop()
        pending = [t for t in self.tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.tasks.clear()
