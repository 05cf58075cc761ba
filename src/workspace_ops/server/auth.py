"""
握手鉴权（JWT RS256）。

流程：
- 启动时从环境变量读取 PEM 公钥并解析（失败为致命配置错误，进程拒绝启动）；
- 每个连接在握手后、处理任何消息前，从请求 URL 的 `?token=` 取出 JWT；
- 只接受 RS256 签名，`exp`/`nbf` 等标准声明由 PyJWT 校验；
- 任一步失败抛 `AuthenticationError`，server 以 1008 关闭连接。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qs, urlsplit

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from workspace_ops.core.errors import AuthenticationError, ConfigError

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
_PEM_MARKERS = ("-----BEGIN PUBLIC KEY-----", "-----BEGIN RSA PUBLIC KEY-----")


@dataclass(frozen=True)
class Identity:
    """
    已认证的连接身份。

    字段：
    - user_id / repo_id / repo_name：claims 中的 `userId` / `repoId` / `repoName`（可能缺失）
    - username：claims 中的 `username`（缺失时为 `unknown`，仅用于日志）
    - claims：完整 claims（只读使用）
    """

    username: str
    user_id: Optional[Any] = None
    repo_id: Optional[Any] = None
    repo_name: Optional[str] = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Identity":
        username = claims.get("username")
        repo_name = claims.get("repoName")
        return cls(
            username=str(username) if username else "unknown",
            user_id=claims.get("userId"),
            repo_id=claims.get("repoId"),
            repo_name=str(repo_name) if repo_name is not None else None,
            claims=dict(claims),
        )


def normalize_pem(raw: str) -> str:
    """把单行环境变量中的字面量 `\\n` 还原为真实换行。"""

    return raw.replace("\\n", "\n").strip()


def load_public_key(raw: Optional[str], *, env_name: str = "JWT_PUBLIC_KEY") -> rsa.RSAPublicKey:
    """
    解析 PEM 公钥。

    参数：
    - raw：环境变量原始值
    - env_name：用于错误提示的变量名

    异常：
    - ConfigError：缺失 / 没有 PEM 包络 / 内容无法解析 / 不是 RSA 公钥
    """

    if not raw or not raw.strip():
        raise ConfigError(
            f"{env_name} environment variable is required",
            code="AUTH_PUBLIC_KEY_MISSING",
            details={"env": env_name},
        )
    pem = normalize_pem(raw)
    if not any(marker in pem for marker in _PEM_MARKERS):
        raise ConfigError(
            f"{env_name} does not look like a PEM public key (missing BEGIN PUBLIC KEY header)",
            code="AUTH_PUBLIC_KEY_MALFORMED",
            details={"env": env_name},
        )
    # SubjectPublicKeyInfo 与 PKCS#1 两种包络都由 load_pem_public_key 处理。
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except (ValueError, TypeError) as e:
        raise ConfigError(
            f"{env_name} could not be parsed as a PEM public key: {e}",
            code="AUTH_PUBLIC_KEY_MALFORMED",
            details={"env": env_name},
        ) from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ConfigError(
            f"{env_name} must be an RSA public key (RS256)",
            code="AUTH_PUBLIC_KEY_MALFORMED",
            details={"env": env_name, "key_type": type(key).__name__},
        )
    return key


def extract_token(request_path: str) -> Optional[str]:
    """从请求路径（含 query）中取出 `token` 参数；缺失或为空返回 None。"""

    query = urlsplit(request_path or "").query
    values = parse_qs(query).get("token") or []
    return values[0] if values and values[0] else None


class Authenticator:
    """用固定公钥校验连接 token。"""

    def __init__(self, public_key: rsa.RSAPublicKey) -> None:
        self._public_key = public_key

    def verify(self, token: str) -> Dict[str, Any]:
        """校验签名与标准声明，返回 claims；失败抛 `AuthenticationError`。"""

        try:
            claims = jwt.decode(token, self._public_key, algorithms=[ALGORITHM])
        except jwt.PyJWTError as e:
            raise AuthenticationError(str(e)) from e
        if not isinstance(claims, dict):
            raise AuthenticationError("token payload is not an object")
        return claims

    def authenticate(self, request_path: str) -> Identity:
        """
        对一次握手鉴权。

        参数：
        - request_path：握手请求的路径与 query（例如 `/?token=...`）

        返回：
        - Identity
        """

        token = extract_token(request_path)
        if token is None:
            raise AuthenticationError("No token provided")
        return Identity.from_claims(self.verify(token))
