"""
wire 解码：每个连接一条消息。

格式：
- 无分帧、无长度前缀、无响应；
- server 对连接只做一次 `recv(buffer_size)`；超出缓冲的部分被静默截断（已知边界，不是错误）；
- 读到 0 字节（对端有序关闭）表示“没有消息”。
"""

from __future__ import annotations

import socket

from fresnel_comm.core.results import ReadOutcome

DEFAULT_BUFFER_SIZE = 1024
DEFAULT_ENCODING = "utf-8"


def read_message(
    conn: socket.socket,
    *,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    encoding: str = DEFAULT_ENCODING,
    errors: str = "replace",
) -> ReadOutcome:
    """
    从连接读取一条消息（单次 read）。

    参数：
    - conn：已 accept 的连接
    - buffer_size：单次读取上限（字节）
    - encoding/errors：解码参数；errors=strict 时非法字节视为该连接失败

    返回：
    - ReadOutcome：empty / message / error（timeout|read|decode）
    """

    try:
        data = conn.recv(buffer_size)
    except socket.timeout:
        return ReadOutcome.failed(error_kind="timeout", error="timed out waiting for client payload")
    except OSError as e:
        return ReadOutcome.failed(error_kind="read", error=str(e))

    if not data:
        return ReadOutcome.empty()

    try:
        text = data.decode(encoding, errors=errors)
    except UnicodeDecodeError as e:
        return ReadOutcome.failed(error_kind="decode", error=str(e))
    return ReadOutcome.of_message(text, truncated=len(data) >= buffer_size)
