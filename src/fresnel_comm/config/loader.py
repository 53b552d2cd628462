"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者），底层为包内默认配置；
- 使用 pydantic 做 schema 校验；未知字段允许保留（避免默认配置新增字段导致旧 overlay 加载失败）；
- 环境变量覆盖最后生效（`FRESNEL_COMM_SOCKET` / `FRESNEL_COMM_LOG_LEVEL`）。
"""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from fresnel_comm.config.defaults import load_default_config_dict
from fresnel_comm.core.errors import ConfigError

ENV_SOCKET = "FRESNEL_COMM_SOCKET"
ENV_LOG_LEVEL = "FRESNEL_COMM_LOG_LEVEL"


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class ServerConfig(BaseModel):
    """socket 监听与读取参数。"""

    model_config = ConfigDict(extra="allow")

    socket_path: str = Field(default=".fresnel.sock", min_length=1)
    socket_mode: int = Field(default=0o600, ge=0, le=0o777)
    backlog: int = Field(default=16, ge=1)
    buffer_size: int = Field(default=1024, ge=1)
    encoding: str = Field(default="utf-8")
    decode_errors: str = Field(default="replace")  # replace|strict
    read_timeout_sec: Optional[float] = Field(default=10.0, gt=0)
    accept_poll_sec: float = Field(default=0.2, gt=0)

    @field_validator("socket_mode", mode="before")
    @classmethod
    def _parse_octal_mode(cls, value: Any) -> Any:
        """YAML 中以字符串写权限位（例如 `"0600"`），按八进制解析。"""

        if isinstance(value, str):
            try:
                return int(value, 8)
            except ValueError as e:
                raise ValueError(f"socket_mode must be an octal string, got {value!r}") from e
        return value

    @field_validator("decode_errors")
    @classmethod
    def _check_decode_errors(cls, value: str) -> str:
        """只允许 replace/strict。"""

        if value not in ("replace", "strict"):
            raise ValueError("decode_errors must be one of: replace, strict")
        return value

    @field_validator("encoding")
    @classmethod
    def _check_encoding(cls, value: str) -> str:
        """编码名必须可被 codecs 识别。"""

        import codecs

        try:
            codecs.lookup(value)
        except LookupError as e:
            raise ValueError(f"unknown encoding: {value}") from e
        return value


class ExecutorConfig(BaseModel):
    """
    命令执行参数。

    说明：
    - `on_timeout=kill`：bounded wait 到期后终止子进程组（SIGTERM → grace → SIGKILL），并报告终止后的真实状态；
    - `on_timeout=error`：记录超时错误、不报告状态，子进程保持运行；
    - `stderr`：merge（并入 stdout 一起输出）| inherit（沿用 server 的 stderr）| discard（丢弃）。
    """

    model_config = ConfigDict(extra="allow")

    shell: str = Field(default="/bin/sh", min_length=1)
    wait_timeout_sec: float = Field(default=5.0, gt=0)
    on_timeout: str = Field(default="kill")  # kill|error
    terminate_grace_ms: int = Field(default=200, ge=0)
    stderr: str = Field(default="merge")  # merge|inherit|discard

    @field_validator("on_timeout")
    @classmethod
    def _check_on_timeout(cls, value: str) -> str:
        """只允许 kill/error。"""

        if value not in ("kill", "error"):
            raise ValueError("on_timeout must be one of: kill, error")
        return value

    @field_validator("stderr")
    @classmethod
    def _check_stderr(cls, value: str) -> str:
        """只允许 merge/inherit/discard。"""

        if value not in ("merge", "inherit", "discard"):
            raise ValueError("stderr must be one of: merge, inherit, discard")
        return value


class LoggingConfig(BaseModel):
    """日志级别（仅 CLI 入口会据此配置 root logger）。"""

    model_config = ConfigDict(extra="allow")

    level: str = Field(default="INFO")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        """统一为大写并校验为标准 logging 级别名。"""

        v = str(value or "").strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return v


class FresnelCommConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="allow")

    config_version: int = Field(default=1, ge=1)
    server: ServerConfig = Field(default_factory=ServerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise ConfigError(code="CONFIG_NOT_FOUND", message="Config file not found.", details={"path": str(path)})
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(
            code="CONFIG_INVALID", message="Config file is not valid YAML.", details={"path": str(path), "reason": str(e)}
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            code="CONFIG_INVALID",
            message="Config root must be a mapping.",
            details={"path": str(path), "actual": type(data).__name__},
        )
    return data


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    从环境变量生成 overlay dict。

    参数：
    - environ：环境变量映射（默认 `os.environ`）

    返回：
    - dict：可直接参与 `_deep_merge` 的 overlay；无相关变量时为空
    """

    env = os.environ if environ is None else environ
    overlay: Dict[str, Any] = {}
    sock = str(env.get(ENV_SOCKET) or "").strip()
    if sock:
        overlay.setdefault("server", {})["socket_path"] = sock
    level = str(env.get(ENV_LOG_LEVEL) or "").strip()
    if level:
        overlay.setdefault("logging", {})["level"] = level
    return overlay


def load_config_dicts(config_dicts: Iterable[Dict[str, Any]], *, include_defaults: bool = True) -> FresnelCommConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `FresnelCommConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - include_defaults：是否以包内 `default.yaml` 作为最底层
    """

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    try:
        return FresnelCommConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(code="CONFIG_INVALID", message="Config is invalid.", details={"reason": str(e)}) from e


def load_config(
    config_paths: Iterable[Path] = (),
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> FresnelCommConfig:
    """
    加载默认配置 + YAML overlays + 环境变量覆盖。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    - environ：环境变量映射（默认 `os.environ`；测试可注入）
    """

    overlays = [_load_yaml_file(Path(p)) for p in config_paths]
    overlays.append(env_overrides(environ))
    return load_config_dicts(overlays)
