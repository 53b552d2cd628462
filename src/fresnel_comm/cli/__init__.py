"""
CLI 模块。

说明：
- 对外入口为 `fresnel-comm serve|send`（由 `pyproject.toml` 的 `[project.scripts]` 注册）；
- CLI 只做“配置加载 + 调用 runtime + 结果输出”，不复制核心逻辑。
"""
