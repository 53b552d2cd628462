"""
CommandServer：accept loop 与失败策略。

行为：
- 启动：删除旧 socket 文件 → bind → listen（失败即 `StartupError`，server 不进入 loop）；
- loop：逐个 accept，每个连接读一条消息，有消息则交给 executor 同步执行；
  命令严格按 accept 顺序执行，任意时刻最多一条命令在运行；
- 单连接/单命令失败：记录日志后继续 loop；
- 退出：shutdown 请求（SIGTERM/SIGINT，信号会转发给运行中命令的进程组）或监听 socket 本身失效；
  任何退出路径都会删除 socket 文件。
"""

from __future__ import annotations

import logging
import signal
import threading
from pathlib import Path
from typing import Optional

from fresnel_comm.config.loader import FresnelCommConfig, load_config
from fresnel_comm.core.executor import CommandExecutor, Emit
from fresnel_comm.core.results import ReadOutcome
from fresnel_comm.logging_setup import setup_logging
from fresnel_comm.runtime.listener import SocketListener
from fresnel_comm.runtime.paths import resolve_socket_path

logger = logging.getLogger(__name__)


class CommandServer:
    """
    单线程命令 server。

    参数：
    - config：校验后的配置（socket/执行参数）
    - executor：自定义执行器（测试注入）；默认按 `config.executor` 构造
    - emit：输出回调（仅在未传 executor 时生效）
    """

    def __init__(
        self,
        config: Optional[FresnelCommConfig] = None,
        *,
        executor: Optional[CommandExecutor] = None,
        emit: Optional[Emit] = None,
    ) -> None:
        """创建 server（不做任何 IO）。"""

        self._config = config or FresnelCommConfig()
        srv = self._config.server
        self._socket_path = resolve_socket_path(srv.socket_path)
        self._executor = executor or CommandExecutor.from_config(self._config.executor, encoding=srv.encoding, emit=emit)

        self._shutdown = threading.Event()
        self._ready = threading.Event()
        self.handled = 0
        self.failed_connections = 0

    @property
    def socket_path(self) -> Path:
        """已解析的 socket 绝对路径。"""

        return self._socket_path

    def _make_listener(self) -> SocketListener:
        """按配置构造 SocketListener。"""

        srv = self._config.server
        return SocketListener(
            self._socket_path,
            buffer_size=srv.buffer_size,
            encoding=srv.encoding,
            decode_errors=srv.decode_errors,
            read_timeout_sec=srv.read_timeout_sec,
            accept_poll_sec=srv.accept_poll_sec,
            socket_mode=srv.socket_mode,
            backlog=srv.backlog,
        )

    def request_shutdown(self) -> None:
        """
        请求退出 loop（线程安全，可在 signal handler 中调用）。

        说明：
        - 有命令在运行时，向其进程组转发 SIGTERM，使 drain/wait 尽快结束；
        - 重复请求（例如第二次 Ctrl-C）升级为 SIGKILL，应对忽略 SIGTERM 的命令。
        """

        repeated = self._shutdown.is_set()
        self._shutdown.set()
        self._executor.signal_running(signal.SIGKILL if repeated else signal.SIGTERM)

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        """等待 socket 绑定完成；返回是否就绪。"""

        return self._ready.wait(timeout)

    def serve_forever(self) -> None:
        """
        绑定 socket 并处理连接，直到 shutdown 请求。

        异常：
        - StartupError：socket 无法准备（旧文件删除失败、bind/listen 失败）
        """

        with self._make_listener() as listener:
            self._ready.set()
            try:
                while not self._shutdown.is_set():
                    self._handle(listener.accept_message())
            finally:
                self._ready.clear()
        logger.info("server stopped (handled=%d, failed_connections=%d)", self.handled, self.failed_connections)

    def _handle(self, outcome: ReadOutcome) -> None:
        """根据一次 accept/read 的 outcome 决定忽略、记录或执行。"""

        if outcome.kind == "idle":
            return
        if outcome.kind == "empty":
            logger.debug("connection closed without payload; nothing to execute")
            return
        if outcome.kind == "error":
            self.failed_connections += 1
            logger.warning("connection dropped (%s): %s", outcome.error_kind, outcome.error)
            return

        if outcome.truncated:
            logger.warning(
                "payload filled the %d-byte buffer; it may have been truncated",
                self._config.server.buffer_size,
            )
        try:
            result = self._executor.eval(outcome.message or "")
        except Exception:
            logger.error("command %r failed unexpectedly; continuing", outcome.message, exc_info=True)
            return
        finally:
            self.handled += 1
        if not result.ok:
            logger.warning(
                "command finished with state=%s error_kind=%s exit_code=%s",
                result.state,
                result.error_kind,
                result.exit_code,
            )


def run_server(config: FresnelCommConfig, *, emit: Optional[Emit] = None) -> None:
    """
    在主线程运行 server：SIGTERM/SIGINT 触发有序退出，退出后恢复原 signal handler。

    参数：
    - config：校验后的配置
    - emit：输出回调（默认写 stdout）
    """

    server = CommandServer(config, emit=emit)

    def _on_signal(signum, _frame) -> None:
        """收到终止信号：请求 loop 退出并终止运行中的命令（清理由 listener 的 context manager 完成）。"""

        logger.info("received signal %s; shutting down", signal.Signals(signum).name)
        server.request_shutdown()

    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        server.serve_forever()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def main() -> int:
    """
    模块入口：`python -m fresnel_comm.runtime.server`。

    环境变量：
    - `FRESNEL_COMM_SOCKET`：socket 路径（默认 `.fresnel.sock`）
    - `FRESNEL_COMM_LOG_LEVEL`：日志级别
    """

    config = load_config()
    setup_logging(config.logging.level)
    run_server(config)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
