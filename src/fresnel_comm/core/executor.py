"""
CommandExecutor（单条命令的执行引擎）。

本模块负责：
- `CommandExecutor.eval(command_line)`：经 shell 执行一整行命令（不做预分词，管道/重定向由 shell 处理）
- 逐行输出子进程 stdout（阻塞式、无批量缓冲），随后 bounded wait，最后报告退出码

状态机（每次调用）：
    spawned -> draining -> awaiting_exit -> reported
任一阶段失败进入 aborted（记录 traceback，不向上传播）。

约束：
- 必须先 drain 再 wait：若先 wait，子进程在 pipe 写满时会阻塞，双方互相等待；
- 所有输出（`$ <cmd>`、stdout 行、退出码）都经由 `emit` 回调，默认写到 server 的 stdout；
  emit 自身失败（例如 stdout 管道已关闭）同样进入 aborted；
- `signal_running()` 把 server 收到的终止信号转发给运行中命令的进程组。
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from typing import Callable, Optional

from fresnel_comm.core.results import CommandResult

logger = logging.getLogger(__name__)

Emit = Callable[[str], None]

_STDERR_TARGETS = {
    "merge": subprocess.STDOUT,
    "inherit": None,
    "discard": subprocess.DEVNULL,
}


def print_line(line: str) -> None:
    """默认 emit：写到 stdout 并立即 flush（逐行可见）。"""

    print(line, flush=True)


def _strip_eol(line: str) -> str:
    """去掉行尾的 `\\n` / `\\r\\n`。"""

    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


class CommandExecutor:
    """
    命令执行器。

    参数：
    - shell：命令解释器路径；实际执行 `<shell> -c <command_line>`
    - wait_timeout_sec：stdout 读到 EOF 后等待子进程退出的上限（秒）
    - on_timeout：`kill`（终止进程组并报告真实状态）| `error`（记录错误，不报告状态，子进程保留）
    - terminate_grace_ms：SIGTERM → SIGKILL 的宽限时间（毫秒）
    - stderr：`merge|inherit|discard`
    - encoding：解码子进程输出的编码（非法字节替换为 U+FFFD）
    - emit：输出回调（默认 `print_line`）
    """

    def __init__(
        self,
        *,
        shell: str = "/bin/sh",
        wait_timeout_sec: float = 5.0,
        on_timeout: str = "kill",
        terminate_grace_ms: int = 200,
        stderr: str = "merge",
        encoding: str = "utf-8",
        emit: Optional[Emit] = None,
    ) -> None:
        """创建执行器；参数非法时抛 ValueError。"""

        if wait_timeout_sec <= 0:
            raise ValueError("wait_timeout_sec must be > 0")
        if on_timeout not in ("kill", "error"):
            raise ValueError("on_timeout must be one of: kill, error")
        if terminate_grace_ms < 0:
            raise ValueError("terminate_grace_ms must be >= 0")
        if stderr not in _STDERR_TARGETS:
            raise ValueError("stderr must be one of: merge, inherit, discard")
        self._shell = shell
        self._wait_timeout_sec = float(wait_timeout_sec)
        self._on_timeout = on_timeout
        self._terminate_grace_ms = int(terminate_grace_ms)
        self._stderr = stderr
        self._encoding = encoding
        self._emit: Emit = emit or print_line
        self._current: Optional[subprocess.Popen[bytes]] = None

    def signal_running(self, sig: int = signal.SIGTERM) -> bool:
        """
        向正在执行的命令所在进程组发送信号（不等待其退出）。

        参数：
        - sig：信号编号（默认 SIGTERM）

        返回：
        - bool：是否有运行中的子进程收到了信号

        说明：
        - 可在 signal handler 或其它线程中调用；子进程退出后 drain 读到 EOF，`eval` 按正常流程报告退出状态；
        - 子进程处于独立 session，终端的 Ctrl-C 不会直接送达，server 退出时需经由此方法转发。
        """

        proc = self._current
        if proc is None or proc.returncode is not None:
            return False
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            proc.send_signal(sig)
        logger.info("sent %s to process group of pid=%s", signal.Signals(sig).name, proc.pid)
        return True

    @classmethod
    def from_config(cls, cfg, *, encoding: str = "utf-8", emit: Optional[Emit] = None) -> "CommandExecutor":
        """
        由 `ExecutorConfig` 构造执行器。

        参数：
        - cfg：`fresnel_comm.config.ExecutorConfig`
        - encoding：与 server 解码 socket 消息使用同一编码
        - emit：输出回调
        """

        return cls(
            shell=cfg.shell,
            wait_timeout_sec=cfg.wait_timeout_sec,
            on_timeout=cfg.on_timeout,
            terminate_grace_ms=cfg.terminate_grace_ms,
            stderr=cfg.stderr,
            encoding=encoding,
            emit=emit,
        )

    def eval(self, command_line: str) -> CommandResult:
        """
        执行一条命令并报告结果（不抛异常）。

        参数：
        - command_line：原样交给 shell 的命令行

        返回：
        - `CommandResult`：state=reported 时 exit_code 已经通过 emit 输出；state=aborted 时不输出退出码
        """

        start = time.monotonic()
        try:
            self._emit(f"$ {command_line}")
        except Exception as e:
            logger.error("failed to emit command echo for %r", command_line, exc_info=True)
            return self._aborted(command_line, start, error_kind="emit", error=str(e))
        logger.info("executing command: %s", command_line)

        try:
            proc = self._spawn(command_line)
        except FileNotFoundError as e:
            logger.error("failed to spawn %s for command %r", self._shell, command_line, exc_info=True)
            return self._aborted(command_line, start, error_kind="not_found", error=str(e))
        except Exception as e:
            logger.error("failed to spawn %s for command %r", self._shell, command_line, exc_info=True)
            return self._aborted(command_line, start, error_kind="spawn", error=str(e))
        logger.debug("spawned pid=%s", proc.pid)
        self._current = proc
        try:
            return self._drain_and_report(proc, command_line, start)
        finally:
            self._current = None

    def _drain_and_report(self, proc: subprocess.Popen[bytes], command_line: str, start: float) -> CommandResult:
        """draining → awaiting_exit → reported；任一阶段失败返回 aborted。"""

        # draining
        lines = 0
        try:
            lines = self._drain(proc)
        except Exception as e:
            logger.error("failed to read output of pid=%s", proc.pid, exc_info=True)
            if proc.poll() is None:
                try:
                    self._terminate_process(proc)
                except Exception:
                    logger.error("failed to terminate pid=%s", proc.pid, exc_info=True)
            return self._aborted(command_line, start, error_kind="read", error=str(e), lines=lines)
        finally:
            if proc.stdout is not None:
                proc.stdout.close()

        # awaiting_exit
        timeout = False
        try:
            exit_code = proc.wait(timeout=self._wait_timeout_sec)
        except subprocess.TimeoutExpired:
            timeout = True
            if self._on_timeout == "error":
                logger.error(
                    "pid=%s did not exit within %.1fs; exit status not reported, process left running",
                    proc.pid,
                    self._wait_timeout_sec,
                )
                return self._aborted(
                    command_line,
                    start,
                    error_kind="timeout",
                    error=f"process did not exit within {self._wait_timeout_sec}s",
                    lines=lines,
                    timeout=True,
                )
            logger.warning("pid=%s did not exit within %.1fs; terminating", proc.pid, self._wait_timeout_sec)
            try:
                exit_code = self._terminate_process(proc)
            except Exception as e:
                logger.error("failed to terminate pid=%s", proc.pid, exc_info=True)
                return self._aborted(command_line, start, error_kind="wait", error=str(e), lines=lines, timeout=True)
        except Exception as e:
            logger.error("failed to wait for pid=%s", proc.pid, exc_info=True)
            return self._aborted(command_line, start, error_kind="wait", error=str(e), lines=lines)

        # reported
        try:
            self._emit(str(exit_code))
        except Exception as e:
            logger.error("failed to emit exit status of pid=%s", proc.pid, exc_info=True)
            return self._aborted(command_line, start, error_kind="emit", error=str(e), lines=lines, timeout=timeout)
        duration_ms = int((time.monotonic() - start) * 1000)
        ok = exit_code == 0 and not timeout
        error_kind: Optional[str] = None
        if timeout:
            error_kind = "timeout"
        elif not ok:
            error_kind = "exit_code"
        return CommandResult(
            command=command_line,
            ok=ok,
            state="reported",
            exit_code=exit_code,
            lines=lines,
            timeout=timeout,
            error_kind=error_kind,
            duration_ms=duration_ms,
        )

    def _spawn(self, command_line: str) -> subprocess.Popen[bytes]:
        """
        启动子进程：`<shell> -c <command_line>`。

        说明：
        - 继承 server 的环境变量与工作目录；
        - stdin 接 /dev/null（server 不会向子进程写入）；
        - 子进程成为新的进程组 leader，超时终止时可一并清理其派生进程。
        """

        return subprocess.Popen(  # noqa: S603
            [self._shell, "-c", command_line],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=_STDERR_TARGETS[self._stderr],
            start_new_session=True,
        )

    def _drain(self, proc: subprocess.Popen[bytes]) -> int:
        """逐行读取 stdout 直到 EOF，每读到一行立即 emit；返回行数。"""

        if proc.stdout is None:
            raise RuntimeError("child stdout is not a pipe")
        count = 0
        for raw in iter(proc.stdout.readline, b""):
            self._emit(_strip_eol(raw.decode(self._encoding, errors="replace")))
            count += 1
        return count

    def _terminate_process(self, proc: subprocess.Popen[bytes]) -> Optional[int]:
        """
        终止子进程组：SIGTERM → (grace) → SIGKILL，返回终止后观察到的退出状态。

        返回：
        - int：通常为负的信号编号（例如 -15 / -9）；进程恰好自行退出时为其真实退出码
        """

        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.terminate()

        try:
            return proc.wait(timeout=self._terminate_grace_ms / 1000.0)
        except subprocess.TimeoutExpired:
            pass

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.kill()
        return proc.wait(timeout=self._wait_timeout_sec)

    def _aborted(
        self,
        command_line: str,
        start: float,
        *,
        error_kind: str,
        error: str,
        lines: int = 0,
        timeout: bool = False,
    ) -> CommandResult:
        """构造 aborted 终态结果（不输出退出码）。"""

        return CommandResult(
            command=command_line,
            ok=False,
            state="aborted",
            exit_code=None,
            lines=lines,
            timeout=timeout,
            error_kind=error_kind,
            error=error,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
