from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


class KeyPair:
    """测试用 RSA 密钥对 + token 签发。"""

    def __init__(self) -> None:
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.public_key = self.private_key.public_key()
        self.public_pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def token(self, claims: Optional[Dict[str, Any]] = None, *, algorithm: str = "RS256", **kwargs: Any) -> str:
        payload: Dict[str, Any] = {"userId": 7, "username": "alice", "repoId": 42, "repoName": "site"}
        payload.update(claims or {})
        payload.setdefault("exp", int(time.time()) + 600)
        return jwt.encode(payload, self.private_key, algorithm=algorithm, **kwargs)


@pytest.fixture(scope="session")
def keypair() -> KeyPair:
    return KeyPair()


@pytest.fixture(scope="session")
def other_keypair() -> KeyPair:
    return KeyPair()
