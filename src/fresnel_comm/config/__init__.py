"""配置层：包内默认 YAML + overlays + 环境变量覆盖，pydantic 校验。"""

from __future__ import annotations

from fresnel_comm.config.loader import (
    ExecutorConfig,
    FresnelCommConfig,
    LoggingConfig,
    ServerConfig,
    load_config,
    load_config_dicts,
)

__all__ = [
    "ExecutorConfig",
    "FresnelCommConfig",
    "LoggingConfig",
    "ServerConfig",
    "load_config",
    "load_config_dicts",
]
