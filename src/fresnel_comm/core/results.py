"""
各阶段的结构化结果（accept/decode/execute）。

说明：
- accept loop 对每个阶段的 outcome 做分支判断，而不是依赖 try/except 的位置来表达“哪些失败是致命的”；
- `ReadOutcome` 是 listener 的产物（每个连接一个）；
- `CommandResult` 是 executor 的产物（每条命令一个）。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ReadOutcome:
    """
    一次 accept + read 的结果。

    字段：
    - kind：`idle|empty|message|error`
      - idle：poll 间隔内无连接（仅用于让 loop 观察 shutdown 请求）
      - empty：client 未写任何字节即关闭连接（不执行命令）
      - message：读到一条命令
      - error：accept/read/decode 失败（仅放弃该连接）
    - message：解码后的命令行（kind=message）
    - truncated：payload 是否填满了读缓冲（可能被截断；恰好等于缓冲大小的 payload 同样置位）
    - error_kind/error：失败分类与可读信息（kind=error）
    """

    kind: str
    message: Optional[str] = None
    truncated: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def idle(cls) -> "ReadOutcome":
        """poll 超时，无连接。"""

        return cls(kind="idle")

    @classmethod
    def empty(cls) -> "ReadOutcome":
        """连接在写入任何数据前被关闭。"""

        return cls(kind="empty")

    @classmethod
    def of_message(cls, message: str, *, truncated: bool = False) -> "ReadOutcome":
        """读到一条命令。"""

        return cls(kind="message", message=message, truncated=truncated)

    @classmethod
    def failed(cls, *, error_kind: str, error: str) -> "ReadOutcome":
        """
        单连接失败。

        参数：
        - error_kind：`accept|read|timeout|decode`
        - error：可读错误信息
        """

        return cls(kind="error", error_kind=error_kind, error=error)


class CommandResult(BaseModel):
    """
    单条命令的执行结果（结构化）。

    字段说明：
    - command：原始命令行
    - ok：exit_code==0 且未超时、未中止
    - state：状态机终态 `reported|aborted`
    - exit_code：已报告的退出码；中止或 on_timeout=error 时为 None；
      超时被强制终止时为负的信号编号（Popen 约定）
    - lines：已输出的 stdout 行数
    - timeout：bounded wait 是否到期
    - error_kind：`not_found|spawn|read|wait|timeout|exit_code|emit`（emit：输出回调失败，例如 stdout 已关闭）
    - error：可读错误信息
    - duration_ms：耗时（毫秒）
    """

    model_config = ConfigDict(extra="forbid")

    command: str
    ok: bool
    state: str
    exit_code: Optional[int] = None
    lines: int = Field(default=0, ge=0)
    timeout: bool = False
    error_kind: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = Field(default=0, ge=0)
