"""
协议数据结构（JSON action 协议）。

入站：一个 JSON object，必须包含 `action`，其余字段依 action 而定：
`path` / `oldPath` / `newPath` / `content` / `encoding` / `command` / `message` / `file`。

出站：一个 JSON object，回显 `action`（以及 `path`、`oldPath`/`newPath` 等标识字段），
并携带 `success: bool`，成功时附带结果字段，失败时附带 `error: str`。

约束：
- 没有 request id；请求与响应只靠回显字段对应。
- 每个请求恰好一个响应（未知 action 在 `ignore` 模式下除外）。
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# 会触达文件系统（或被当作路径传给 git）的请求字段。
PATH_FIELDS = ("path", "oldPath", "newPath", "file")


class ActionRequest(BaseModel):
    """已解码的请求（只在处理期间存在，不跨请求保留）。"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    action: str = Field(min_length=1)
    path: Optional[str] = None
    old_path: Optional[str] = Field(default=None, alias="oldPath")
    new_path: Optional[str] = Field(default=None, alias="newPath")
    content: Optional[str] = None
    encoding: Optional[str] = None
    command: Optional[str] = None
    message: Optional[str] = None
    file: Optional[str] = None


class ProtocolError(ValueError):
    """入站消息无法解码为 JSON object。"""


def decode_message(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    解码一条入站消息。

    参数：
    - raw：文本帧或二进制帧（按 UTF-8 解码）

    异常：
    - ProtocolError：非法 UTF-8 / 非法 JSON / 根节点不是 object
    """

    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        data = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(str(e)) from e
    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")
    return data


def encode_message(obj: Dict[str, Any]) -> str:
    """把响应编码为 JSON 文本帧。"""

    return json.dumps(obj, ensure_ascii=False)


def success_response(action: str, **fields: Any) -> Dict[str, Any]:
    """构造成功响应：`{action, <fields>, success: true}`。"""

    return {"action": action, **fields, "success": True}


def error_response(action: Any, error: str, **fields: Any) -> Dict[str, Any]:
    """构造失败响应：`{action, <fields>, success: false, error}`。"""

    return {"action": action, **fields, "success": False, "error": error}


def protocol_error_response(error: str) -> Dict[str, Any]:
    """无法解码的消息：以 `action: "error"` 回包（连接保持）。"""

    return {"action": "error", "error": error, "success": False}
