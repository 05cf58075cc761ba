"""
文件操作 handler：read / write / create / mkdir / delete / rename / list。

约定：
- 所有路径都相对工作区 root，并在任何文件系统副作用之前通过路径安全校验；
- 失败一律抛异常，由 `ActionRegistry.execute` 转换为 `success=false` 并回显 path；
- write/create 命中前端源码扩展名时 touch 样式触发文件（通知外部构建 watcher 重新扫描样式）。
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Any, Dict

from workspace_ops.core.errors import OperationError
from workspace_ops.ops.builtin.listing import list_directory
from workspace_ops.ops.registry import OperationContext
from workspace_ops.protocol import ActionRequest, success_response

logger = logging.getLogger(__name__)

BASE64 = "base64"
UTF8 = "utf8"


def _decode_base64(content: str) -> bytes:
    try:
        return base64.b64decode(content, validate=True)
    except binascii.Error as e:
        raise OperationError(f"Invalid base64 content: {e}") from e


def read_file(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """
    读取文件。

    返回：
    - `encoding == "base64"`：content 为 base64 文本；否则为 UTF-8 文本（非法字节替换）
    - 响应中的 encoding 回显请求值，缺省为 `utf8`
    """

    target = ctx.resolve(request.path)
    data = target.read_bytes()
    if request.encoding == BASE64:
        content = base64.b64encode(data).decode("ascii")
    else:
        content = data.decode("utf-8", errors="replace")
    logger.info("[%s] Read file: %s%s", ctx.username, request.path, " (base64)" if request.encoding == BASE64 else "")
    return success_response(
        "read",
        path=request.path,
        content=content,
        encoding=request.encoding or UTF8,
    )


def write_file(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """覆盖写文件（自动创建父目录）；支持 base64 二进制内容。"""

    target = ctx.resolve(request.path)
    if request.content is None:
        raise OperationError("content is required")
    payload = _decode_base64(request.content) if request.encoding == BASE64 else request.content.encode("utf-8")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload)
    ctx.workspace.touch_style_trigger(request.path or "")
    logger.info("[%s] Wrote file: %s", ctx.username, request.path)
    return success_response("write", path=request.path)


def create_file(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """创建文本文件；缺少 content 时创建空文件（已存在则覆盖）。"""

    target = ctx.resolve(request.path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(request.content or "", encoding="utf-8")
    ctx.workspace.touch_style_trigger(request.path or "")
    logger.info("[%s] Created file: %s", ctx.username, request.path)
    return success_response("create", path=request.path)


def make_directory(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    target = ctx.resolve(request.path)
    target.mkdir(parents=True, exist_ok=True)
    logger.info("[%s] Created directory: %s", ctx.username, request.path)
    return success_response("mkdir", path=request.path)


def delete_path(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """
    删除文件或目录。

    说明：
    - 先 stat：目标已不存在时按成功返回（重复删除幂等）；
    - 目录递归删除，删除过程中条目被并发移除不视为失败；文件直接 unlink。
    """

    target = ctx.resolve(request.path)
    try:
        st = os.stat(target, follow_symlinks=False)
    except FileNotFoundError:
        logger.info("[%s] Delete target already absent: %s", ctx.username, request.path)
        return success_response("delete", path=request.path)
    if stat.S_ISDIR(st.st_mode):
        _remove_tree(target)
    else:
        target.unlink()
    logger.info("[%s] Deleted: %s", ctx.username, request.path)
    return success_response("delete", path=request.path)


def _ignore_missing(exc: BaseException) -> None:
    if not isinstance(exc, FileNotFoundError):
        raise exc


def _remove_tree(target: Path) -> None:
    if sys.version_info >= (3, 12):
        shutil.rmtree(target, onexc=lambda _func, _path, exc: _ignore_missing(exc))
    else:
        shutil.rmtree(target, onerror=lambda _func, _path, exc_info: _ignore_missing(exc_info[1]))


def rename_path(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """重命名/移动（两个路径分别校验；目标父目录自动创建；同文件系统内原子替换）。"""

    if not request.old_path or not request.new_path:
        raise OperationError("oldPath and newPath are required")
    source = ctx.resolve(request.old_path, message="Invalid path")
    destination = ctx.resolve(request.new_path, message="Invalid path")
    destination.parent.mkdir(parents=True, exist_ok=True)
    os.replace(source, destination)
    logger.info("[%s] Renamed: %s -> %s", ctx.username, request.old_path, request.new_path)
    return success_response("rename", oldPath=request.old_path, newPath=request.new_path)


def list_files(request: ActionRequest, ctx: OperationContext) -> Dict[str, Any]:
    """递归列举目录；`path == "."` 表示工作区根。"""

    if request.path == ".":
        target, base = ctx.workspace.root, ""
    else:
        target, base = ctx.resolve(request.path), request.path or ""
    files = list_directory(
        target,
        base,
        visible_dot_entries=ctx.visible_dot_entries,
        skip_names=ctx.skip_names,
    )
    logger.info("[%s] Listed directory: %s", ctx.username, request.path)
    return success_response("list", path=request.path, files=files)
