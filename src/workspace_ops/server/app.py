"""
WorkspaceServer：WebSocket 服务入口。

连接生命周期：
1) 握手完成后立即鉴权（`?token=`）；失败以 1008 `Unauthorized` 关闭，不发送任何协议消息；
2) 成功后绑定身份并启动心跳监视器；
3) 每条入站消息创建一个任务并发处理，各自回包；
4) 连接以任何方式结束（正常关闭 / 错误 / 心跳中止）时，停止心跳并取消未完成的任务。
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from workspace_ops.core.errors import AuthenticationError
from workspace_ops.core.executor import Executor
from workspace_ops.core.workspace import Workspace
from workspace_ops.ops.builtin import register_builtin_actions
from workspace_ops.ops.registry import ActionRegistry
from workspace_ops.protocol import encode_message, protocol_error_response
from workspace_ops.server.auth import Authenticator
from workspace_ops.server.connection import Connection, WebSocketTransport
from workspace_ops.server.dispatcher import ActionDispatcher
from workspace_ops.server.liveness import LivenessMonitor

if TYPE_CHECKING:
    from workspace_ops.bootstrap import ServerSettings
    from workspace_ops.config.loader import WorkspaceOpsConfig

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008


class WorkspaceServer:
    """
    WebSocket 服务。

    参数：
    - dispatcher：action 分发器
    - authenticator：握手鉴权器
    - host / port：监听地址（port=0 表示由系统分配）
    - max_message_bytes：单条消息上限（超出时由传输层关闭连接）
    - heartbeat_interval_sec：心跳检查间隔
    """

    def __init__(
        self,
        *,
        dispatcher: ActionDispatcher,
        authenticator: Authenticator,
        host: str = "0.0.0.0",
        port: int = 8080,
        max_message_bytes: int = 50 * 1024 * 1024,
        heartbeat_interval_sec: float = 20.0,
    ) -> None:
        self._dispatcher = dispatcher
        self._authenticator = authenticator
        self._host = host
        self._port = port
        self._max_message_bytes = max_message_bytes
        self._heartbeat_interval_sec = heartbeat_interval_sec
        self._server: Optional[Server] = None
        self._connections: set[Connection] = set()

    @classmethod
    def build(cls, config: "WorkspaceOpsConfig", *, public_key: rsa.RSAPublicKey, workspace_root: Path) -> "WorkspaceServer":
        """按配置装配 workspace / registry / dispatcher / authenticator。"""

        workspace = Workspace(
            root=workspace_root,
            executor=Executor(),
            style_trigger_path=config.files.style_trigger_path,
            style_trigger_extensions=tuple(config.files.style_trigger_extensions),
            serialize_mutations=config.workspace.serialize_mutations,
        )
        registry = register_builtin_actions(ActionRegistry())
        return cls(
            dispatcher=ActionDispatcher.from_config(config, registry, workspace),
            authenticator=Authenticator(public_key),
            host=config.server.host,
            port=config.server.port,
            max_message_bytes=config.server.max_message_bytes,
            heartbeat_interval_sec=config.server.heartbeat_interval_sec,
        )

    @classmethod
    def from_settings(cls, settings: "ServerSettings") -> "WorkspaceServer":
        return cls.build(settings.config, public_key=settings.public_key, workspace_root=settings.workspace_root)

    @property
    def port(self) -> int:
        """实际监听端口（启动后可用；用于 port=0 的场景）。"""

        if self._server is None:
            return self._port
        for sock in self._server.sockets:
            return int(sock.getsockname()[1])
        return self._port

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        """开始监听（关闭内置 keepalive，心跳由 `LivenessMonitor` 负责）。"""

        if self._server is not None:
            return
        self._server = await serve(
            self.handle,
            self._host,
            self._port,
            max_size=self._max_message_bytes,
            ping_interval=None,
        )
        logger.info(
            "WebSocket server listening on %s:%s (workspace: %s)",
            self._host,
            self.port,
            self._dispatcher.workspace.root,
        )

    async def close(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        await server.wait_closed()
        self._dispatcher.close()
        logger.info("WebSocket server stopped")

    async def serve_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """启动并阻塞，直到 stop 被设置（或任务被取消）。"""

        await self.start()
        try:
            if stop is None:
                await asyncio.Future()
            else:
                await stop.wait()
        finally:
            await self.close()

    async def handle(self, websocket: ServerConnection) -> None:
        """单连接处理入口（由 websockets 在握手完成后调用）。"""

        request_path = websocket.request.path if websocket.request is not None else ""
        try:
            identity = self._authenticator.authenticate(request_path)
        except AuthenticationError as e:
            logger.warning("Connection rejected from %s: %s", websocket.remote_address, e)
            await websocket.close(POLICY_VIOLATION, "Unauthorized")
            return

        conn = Connection(websocket=websocket, identity=identity)
        conn.monitor = LivenessMonitor(
            WebSocketTransport(websocket),
            interval_sec=self._heartbeat_interval_sec,
            label=f"{identity.username}@{conn.remote}",
        )
        conn.monitor.start()
        self._connections.add(conn)
        logger.info("User connected: %s (repo: %s) from %s", identity.username, identity.repo_name, conn.remote)

        try:
            async for raw in websocket:
                conn.spawn(self._process(conn, raw))
        except ConnectionClosed as e:
            logger.info("Connection from %s closed: %s", identity.username, e)
        finally:
            self._connections.discard(conn)
            await conn.close()
            logger.info("User disconnected: %s", identity.username)

    async def _process(self, conn: Connection, raw: Union[str, bytes]) -> None:
        try:
            response = await self._dispatcher.dispatch(raw, username=conn.username)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("[%s] Error handling message", conn.username)
            response = protocol_error_response(str(e) or e.__class__.__name__)
        if response is not None:
            await conn.send_json(encode_message(response))
