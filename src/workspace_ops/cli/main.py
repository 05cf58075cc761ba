"""
workspace-ops CLI。

子命令：
- `serve`：解析配置与公钥，启动 WebSocket 服务（阻塞直到 SIGINT/SIGTERM）
- `check-path <path>`：输出路径安全校验结果（JSON，诊断用）

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- `main(argv)` 只返回 exit code，不直接 `sys.exit`（便于测试）
- exit code：0 正常；1 致命配置错误；2 参数错误
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from workspace_ops import __version__, bootstrap
from workspace_ops.core.errors import ConfigError
from workspace_ops.observability.logging import configure_logging
from workspace_ops.safety.paths import is_path_safe
from workspace_ops.server.app import WorkspaceServer

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_USAGE = 2


def ensure_utf8_stdio() -> None:
    """best-effort 将 stdout/stderr reconfigure 为 UTF-8（`C` locale 下避免 UnicodeEncodeError）。"""

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except (OSError, ValueError):
            continue


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="workspace-ops", description="Remote workspace operations server")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Start the WebSocket server")
    serve.add_argument("--host", default=None, help="Listen address (default: server.host)")
    serve.add_argument("--port", type=int, default=None, help="Listen port (default: server.port)")
    serve.add_argument("--root", default=None, help="Workspace root (default: current directory)")
    serve.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML overlay (repeatable; applied after discovered overlays)",
    )
    serve.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: logging.level)",
    )

    check = sub.add_parser("check-path", help="Check whether a client path would be accepted")
    check.add_argument("path")
    return parser


def _serve_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "server.host": args.host,
        "server.port": args.port,
        "workspace.root": str(Path(args.root).expanduser().resolve()) if args.root else None,
        "logging.level": args.log_level,
    }


async def _run_server(server: WorkspaceServer) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # 非 Unix 事件循环：依赖 KeyboardInterrupt
            pass
    await server.serve_forever(stop)


def _handle_serve(args: argparse.Namespace) -> int:
    configure_logging(args.log_level or "INFO")
    root = Path(args.root).expanduser() if args.root else None
    try:
        settings = bootstrap.build_server_settings(
            workspace_root=root,
            config_paths=[Path(p) for p in args.config],
            overrides=_serve_overrides(args),
        )
    except ConfigError as e:
        logger.error("Fatal configuration error: %s", e)
        if e.details:
            logger.error("Configuration error details: %s", json.dumps(e.details, ensure_ascii=False, sort_keys=True))
        print(f"workspace-ops: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.config.logging.level)
    if settings.env_file:
        logger.info("Loaded env file: %s", settings.env_file)
    for p in settings.overlay_paths:
        logger.info("Loaded config overlay: %s", p)

    server = WorkspaceServer.from_settings(settings)
    try:
        asyncio.run(_run_server(server))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except OSError as e:
        logger.error("Server failed to start: %s", e)
        return EXIT_CONFIG
    return EXIT_OK


def _handle_check_path(args: argparse.Namespace) -> int:
    verdict = {"path": args.path, "safe": is_path_safe(args.path)}
    print(json.dumps(verdict, ensure_ascii=False))
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令行参数列表（不含程序名）；为 None 时读取 sys.argv[1:]

    返回：
    - int：exit code（不会直接 sys.exit）
    """

    ensure_utf8_stdio()
    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        # argparse：--help/--version 为 0，参数错误为 2
        code = exc.code
        if code is None:
            return EXIT_OK
        return int(code) if isinstance(code, int) else EXIT_USAGE

    if args.command == "serve":
        return _handle_serve(args)
    if args.command == "check-path":
        return _handle_check_path(args)
    parser.print_usage(sys.stderr)
    return EXIT_USAGE


def console_main() -> None:
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover
    console_main()
