"""
workspace_ops：远程工作区操作服务。

一个经 JWT 认证的 WebSocket 服务，让远端编辑器对单个工作目录执行：
- 文件操作（读 / 写 / 创建 / 删除 / 重命名 / 列举）
- git 操作（状态 / diff / 提交 / 推送 / 强制同步）
- 受限的命令执行（依赖安装、进程管理、npm 脚本）
"""

from __future__ import annotations

__version__ = "0.3.0"

__all__ = ["__version__"]
