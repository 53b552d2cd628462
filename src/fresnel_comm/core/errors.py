"""
错误分类（异常类型）。

说明：
- 只有“致命”错误以异常形式传播：启动失败（socket 无法清理/绑定）、配置非法、client 连接失败；
- 单个连接/单条命令的失败不走异常，而是以 `ReadOutcome` / `CommandResult` 结构化返回，
  由 accept loop 决定 log-and-continue（见 `fresnel_comm.core.results`）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class FresnelCommError(Exception):
    """错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（CLI 输出/日志用）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(FresnelCommError):
    """结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息（例如 socket 路径、原始异常文本）
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class StartupError(FrameworkError):
    """server 启动失败：旧 socket 文件无法删除、bind/listen 失败等（致命）。"""


class ConfigError(FrameworkError):
    """配置文件缺失、YAML 非法或 schema 校验失败。"""


class ClientError(FrameworkError):
    """client 无法连接或写入 server socket。"""
