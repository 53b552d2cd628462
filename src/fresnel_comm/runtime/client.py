"""
一次性 client：连接 server socket，写完整个 payload 后关闭。

说明：
- 不读取任何响应（协议没有响应通道）；
- server 只读取前 1024 字节（默认），超出部分会被截断，这里仅做告警，不拒绝发送。
"""

from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import Union

from fresnel_comm.core.errors import ClientError
from fresnel_comm.runtime.protocol import DEFAULT_BUFFER_SIZE, DEFAULT_ENCODING

logger = logging.getLogger(__name__)


def send_command(
    socket_path: Union[str, Path],
    command: str,
    *,
    encoding: str = DEFAULT_ENCODING,
    timeout_sec: float = 5.0,
) -> int:
    """
    发送一条命令。

    参数：
    - socket_path：server socket 路径
    - command：命令行文本（原样发送）
    - encoding：编码（需与 server 一致）
    - timeout_sec：connect/send 超时

    返回：
    - 已写入的字节数

    异常：
    - ClientError：连接或写入失败（例如 server 未运行、路径不是 socket）
    """

    payload = command.encode(encoding)
    if len(payload) > DEFAULT_BUFFER_SIZE:
        logger.warning(
            "payload is %d bytes; the server reads at most %d bytes per connection",
            len(payload),
            DEFAULT_BUFFER_SIZE,
        )

    path = str(socket_path)
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(float(timeout_sec))
            s.connect(path)
            s.sendall(payload)
    except OSError as e:
        raise ClientError(
            code="CLIENT_CONNECT_FAILED",
            message="Failed to deliver command to server socket.",
            details={"socket_path": path, "reason": str(e)},
        ) from e
    logger.debug("sent %d bytes to %s", len(payload), path)
    return len(payload)
