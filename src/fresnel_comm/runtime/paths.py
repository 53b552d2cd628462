"""socket 路径解析与校验。"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fresnel_comm.core.errors import StartupError

DEFAULT_SOCKET_NAME = ".fresnel.sock"

# AF_UNIX 的 sun_path 上限：Linux 108 bytes（含结尾 NUL），macOS 104 bytes。
MAX_SOCKET_PATH_BYTES = 103


def resolve_socket_path(raw: Optional[str] = None, *, cwd: Optional[Path] = None) -> Path:
    """
    将配置中的 socket 路径解析为绝对路径。

    参数：
    - raw：配置值；为空时使用 `.fresnel.sock`
    - cwd：相对路径的基准目录（默认进程当前工作目录）

    异常：
    - StartupError：路径超出 AF_UNIX 长度上限（否则 bind 时才会以晦涩的 OSError 失败）
    """

    p = Path(str(raw or DEFAULT_SOCKET_NAME)).expanduser()
    if not p.is_absolute():
        p = Path(cwd or Path.cwd()) / p
    p = p.absolute()
    if len(str(p).encode("utf-8")) > MAX_SOCKET_PATH_BYTES:
        raise StartupError(
            code="SOCKET_PATH_TOO_LONG",
            message="Socket path exceeds the AF_UNIX length limit.",
            details={"socket_path": str(p), "max_bytes": MAX_SOCKET_PATH_BYTES},
        )
    return p
