"""日志配置（仅进程入口调用；库代码只使用 `logging.getLogger(__name__)`）。"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    配置 root logger：stderr 上一个 StreamHandler，所有 `fresnel_comm.*` logger 继承该级别。

    说明：
    - 已存在 handler 时不重复添加（重复调用只调整级别）；
    - stdout 保留给命令输出（`$ <cmd>`、子进程输出、退出码），诊断日志统一走 stderr。
    """

    lvl = getattr(logging, str(level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        root.addHandler(handler)
    root.setLevel(lvl)

    logger = logging.getLogger("fresnel_comm")
    logger.setLevel(lvl)
    return logger
