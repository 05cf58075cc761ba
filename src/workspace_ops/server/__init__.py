"""
Server：WebSocket 传输、握手鉴权、心跳与 action 分发。
"""

from __future__ import annotations

from workspace_ops.server.auth import Authenticator, Identity, load_public_key
from workspace_ops.server.liveness import LivenessMonitor

__all__ = ["Authenticator", "Identity", "LivenessMonitor", "load_public_key"]
