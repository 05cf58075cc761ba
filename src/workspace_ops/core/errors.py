"""
服务内部错误分类（异常类型）。

分层（与协议层的处理方式一一对应）：
- 进程级：`ConfigError`（公钥缺失/格式错误、配置文件非法）→ 拒绝启动
- 连接级：`AuthenticationError` → 握手阶段以 1008 关闭连接
- 校验级：`PathSafetyError` → 返回 `success=false`，不触碰文件系统
- 操作级：`OperationError` → 返回 `success=false` + `error`，连接保持

说明：
- 异常仅用于模块间传递“错误层级”语义；对客户端一律转换为 JSON Response。
"""

from __future__ import annotations

from typing import Any, Dict


class WorkspaceOpsError(Exception):
    """服务内部错误基类（不建议直接抛出）。"""


class FrameworkError(WorkspaceOpsError):
    """结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息（不得包含密钥内容）
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"


class ConfigError(FrameworkError):
    """启动期配置错误（致命；进程应显式退出而不是带 traceback 崩溃）。"""

    def __init__(self, message: str, *, code: str = "CONFIG_INVALID", details: Dict[str, Any] | None = None) -> None:
        super().__init__(code=code, message=message, details=details or {})


class AuthenticationError(WorkspaceOpsError):
    """握手鉴权失败（token 缺失/签名不合法/过期等）。"""


class PathSafetyError(WorkspaceOpsError):
    """请求中的路径未通过安全校验。"""

    def __init__(self, path: Any, message: str = "Invalid file path") -> None:
        super().__init__(message)
        self.path = path


class OperationError(WorkspaceOpsError):
    """
    操作失败（缺少必填字段、命令不在白名单、子进程失败等）。

    参数：
    - message：写入 Response.error 的英文文本
    - fields：失败 Response 需要额外携带的字段（例如 exec 超时时已产生的部分 output）
    """

    def __init__(self, message: str, *, fields: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.fields: Dict[str, Any] = dict(fields or {})
