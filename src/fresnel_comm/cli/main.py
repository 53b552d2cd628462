"""
fresnel-comm CLI（serve/send）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）；
- `serve` 的 stdout 专用于命令输出，失败信息以 JSON 写到 stderr；
- `send` 的 stdout 输出机器可读 JSON（成功/失败均输出）。

退出码：
- 0：成功
- 1：server 启动失败 / client 发送失败
- 2：配置非法
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, TextIO

from fresnel_comm import __version__
from fresnel_comm.config.loader import FresnelCommConfig, load_config, load_config_dicts
from fresnel_comm.core.errors import ClientError, ConfigError, FrameworkError, StartupError
from fresnel_comm.logging_setup import setup_logging
from fresnel_comm.runtime.client import send_command
from fresnel_comm.runtime.paths import resolve_socket_path
from fresnel_comm.runtime.server import run_server

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG_INVALID = 2


def _ensure_utf8_stdio() -> None:
    """
    best-effort 将 stdout/stderr reconfigure 为 UTF-8（errors=replace）。

    说明：
    - `C` locale 下 stdout 可能是 ASCII，子进程输出含非 ASCII 时 print 会抛 `UnicodeEncodeError`；
    - 流对象不支持 reconfigure（例如被测试替换）时静默跳过。
    """

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if callable(reconfigure):
            try:
                reconfigure(encoding="utf-8", errors="replace")
            except (ValueError, OSError):
                continue


def _dump_json(obj: Dict[str, Any], stream: TextIO) -> None:
    """将 dict 以单行 JSON 写入 stream（末尾换行）。"""

    stream.write(json.dumps(obj, ensure_ascii=False, separators=(",", ":")) + "\n")
    stream.flush()


def _error_payload(err: FrameworkError) -> Dict[str, Any]:
    """FrameworkError → `{"ok": false, "error": {...}}`。"""

    issue = err.to_issue()
    return {"ok": False, "error": {"code": issue.code, "message": issue.message, "details": issue.details}}


def _load_effective_config(args: argparse.Namespace) -> FresnelCommConfig:
    """
    默认配置 + `--config` overlays + 环境变量，再叠加命令行参数（优先级最高）。

    异常：
    - ConfigError：文件缺失/YAML 非法/校验失败
    """

    config = load_config([Path(p) for p in (args.config or [])])
    cli_overlay: Dict[str, Any] = {}
    if getattr(args, "socket", None):
        cli_overlay.setdefault("server", {})["socket_path"] = args.socket
    if getattr(args, "log_level", None):
        cli_overlay.setdefault("logging", {})["level"] = args.log_level
    if not cli_overlay:
        return config
    return load_config_dicts([config.model_dump(), cli_overlay], include_defaults=False)


def cmd_serve(args: argparse.Namespace) -> int:
    """运行 server 直到收到 SIGTERM/SIGINT。"""

    try:
        config = _load_effective_config(args)
    except ConfigError as e:
        _dump_json(_error_payload(e), sys.stderr)
        return EXIT_CONFIG_INVALID

    setup_logging(config.logging.level)
    try:
        run_server(config)
    except StartupError as e:
        _dump_json(_error_payload(e), sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def cmd_send(args: argparse.Namespace) -> int:
    """发送一条命令（多个位置参数以单个空格拼接）。"""

    try:
        config = _load_effective_config(args)
        socket_path = resolve_socket_path(config.server.socket_path)
    except ConfigError as e:
        _dump_json(_error_payload(e), sys.stdout)
        return EXIT_CONFIG_INVALID
    except StartupError as e:
        _dump_json(_error_payload(e), sys.stdout)
        return EXIT_FAILED

    setup_logging(config.logging.level)
    command = " ".join(args.command)
    try:
        sent = send_command(socket_path, command, encoding=config.server.encoding, timeout_sec=args.timeout)
    except ClientError as e:
        _dump_json(_error_payload(e), sys.stdout)
        return EXIT_FAILED
    _dump_json({"ok": True, "socket_path": str(socket_path), "bytes": sent}, sys.stdout)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """构造 argparse parser（serve/send 两个子命令）。"""

    ap = argparse.ArgumentParser(prog="fresnel-comm", description="Local unix-socket command channel")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="cmd", required=True)

    def _common(p: argparse.ArgumentParser) -> None:
        """两个子命令共享的参数。"""

        p.add_argument("--socket", help="socket path (default .fresnel.sock in the working directory)")
        p.add_argument("--config", action="append", default=[], help="YAML overlay; may be repeated")
        p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="override logging.level")

    s = sub.add_parser("serve", help="Run the command server in the foreground")
    _common(s)
    s.set_defaults(func=cmd_serve)

    c = sub.add_parser("send", help="Send one command line to a running server")
    _common(c)
    c.add_argument("--timeout", type=float, default=5.0, help="connect/send timeout in seconds")
    c.add_argument("command", nargs="*", help="command line; words are joined with single spaces")
    c.set_defaults(func=cmd_send)

    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI 入口（`fresnel-comm`）。"""

    _ensure_utf8_stdio()
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    return int(args.func(args))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
