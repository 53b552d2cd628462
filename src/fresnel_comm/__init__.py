"""
fresnel-comm（本机 Unix socket 命令通道）。

说明：
- client 通过 Unix domain socket 发送一行文本命令；
- 常驻 server 逐个 accept 连接，把消息交给 shell 执行，并把输出与退出码打印到自身 stdout；
- 不回写响应、不做鉴权、不并发处理多个 client。

模块划分：
- `fresnel_comm.runtime`：socket 监听/解码/accept loop/client
- `fresnel_comm.core`：命令执行器、结果类型、错误分类
- `fresnel_comm.config`：YAML overlay + pydantic 校验
- `fresnel_comm.cli`：`fresnel-comm serve|send`
"""

from __future__ import annotations

from fresnel_comm.core.executor import CommandExecutor
from fresnel_comm.core.results import CommandResult, ReadOutcome
from fresnel_comm.runtime.client import send_command
from fresnel_comm.runtime.server import CommandServer

__all__ = ["CommandExecutor", "CommandResult", "CommandServer", "ReadOutcome", "send_command", "__version__"]

__version__ = "0.1.0"
