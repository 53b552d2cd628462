"""
SocketListener：socket 绑定生命周期 + 单连接 accept/read。

语义：
- `open()`：删除路径上的旧文件（不存在不算错误）→ bind → chmod → listen；任一步失败抛 `StartupError`；
- `accept_message()`：accept 一个连接、读一条消息、关闭连接，返回 `ReadOutcome`；
  accept/read 失败只影响该连接（kind=error），不抛异常；
- `close()`：关闭 socket 并删除 socket 文件；作为 context manager 使用时在任何退出路径上执行。
"""

from __future__ import annotations

import contextlib
import logging
import os
import socket
from pathlib import Path
from typing import Optional

from fresnel_comm.core.errors import StartupError
from fresnel_comm.core.results import ReadOutcome
from fresnel_comm.runtime.protocol import DEFAULT_BUFFER_SIZE, DEFAULT_ENCODING, read_message

logger = logging.getLogger(__name__)


class SocketListener:
    """
    独占一个 Unix socket 路径的监听器。

    参数：
    - socket_path：socket 文件路径（绝对路径）
    - buffer_size：单次读取上限
    - encoding/decode_errors：消息解码参数
    - read_timeout_sec：accept 后等待 client 写入的上限；None 表示一直阻塞
    - accept_poll_sec：accept 的轮询间隔（到期返回 idle，便于观察 shutdown 请求）
    - socket_mode：socket 文件权限位
    - backlog：listen backlog（处理当前连接时，后续 client 在此排队）
    """

    def __init__(
        self,
        socket_path: Path,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        encoding: str = DEFAULT_ENCODING,
        decode_errors: str = "replace",
        read_timeout_sec: Optional[float] = 10.0,
        accept_poll_sec: float = 0.2,
        socket_mode: int = 0o600,
        backlog: int = 16,
    ) -> None:
        """创建监听器（不做任何 IO；`open()` 时才 bind）。"""

        self._path = Path(socket_path)
        self._buffer_size = int(buffer_size)
        self._encoding = encoding
        self._decode_errors = decode_errors
        self._read_timeout_sec = read_timeout_sec
        self._accept_poll_sec = float(accept_poll_sec)
        self._socket_mode = int(socket_mode)
        self._backlog = int(backlog)
        self._sock: Optional[socket.socket] = None

    @property
    def path(self) -> Path:
        """socket 文件路径。"""

        return self._path

    @property
    def is_open(self) -> bool:
        """是否已绑定并处于监听状态。"""

        return self._sock is not None

    def open(self) -> None:
        """
        删除旧 socket 文件并开始监听。

        异常：
        - StartupError：旧文件无法删除（例如路径是目录）或 bind/listen 失败
        """

        if self._sock is not None:
            raise RuntimeError("listener is already open")

        try:
            self._path.unlink()
            logger.info("removed stale socket file: %s", self._path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StartupError(
                code="SOCKET_REMOVE_FAILED",
                message="Failed to remove existing file at socket path.",
                details={"socket_path": str(self._path), "reason": str(e)},
            ) from e

        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            s.bind(str(self._path))
            os.chmod(self._path, self._socket_mode)
            s.listen(self._backlog)
            s.settimeout(self._accept_poll_sec)
        except OSError as e:
            s.close()
            self._unlink_socket_file()
            raise StartupError(
                code="SOCKET_BIND_FAILED",
                message="Failed to bind or listen on socket path.",
                details={"socket_path": str(self._path), "reason": str(e)},
            ) from e

        self._sock = s
        logger.info("listening on %s", self._path)

    def accept_message(self) -> ReadOutcome:
        """
        accept 一个连接并读取一条消息；连接在返回前已关闭。

        返回：
        - ReadOutcome：idle / empty / message / error

        异常：
        - RuntimeError：listener 未 open 或已 close（监听 socket 本身失效，属于致命错误）
        """

        if self._sock is None:
            raise RuntimeError("listener is not open")

        try:
            conn, _ = self._sock.accept()
        except socket.timeout:
            return ReadOutcome.idle()
        except OSError as e:
            return ReadOutcome.failed(error_kind="accept", error=str(e))

        with conn:
            try:
                conn.settimeout(self._read_timeout_sec)
            except OSError as e:
                return ReadOutcome.failed(error_kind="read", error=str(e))
            return read_message(
                conn,
                buffer_size=self._buffer_size,
                encoding=self._encoding,
                errors=self._decode_errors,
            )

    def close(self) -> None:
        """关闭监听 socket 并删除 socket 文件（可重复调用）。"""

        sock, self._sock = self._sock, None
        if sock is not None:
            with contextlib.suppress(OSError):
                sock.close()
            self._unlink_socket_file()
            logger.info("closed socket %s", self._path)

    def _unlink_socket_file(self) -> None:
        """删除 socket 文件；不存在不算错误，其它失败只记录日志。"""

        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("failed to remove socket file %s", self._path, exc_info=True)

    def __enter__(self) -> "SocketListener":
        """open 并返回自身。"""

        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        """任何退出路径都释放 socket 与文件。"""

        self.close()
