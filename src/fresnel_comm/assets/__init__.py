"""随 package 分发的静态资源（默认配置 `default.yaml`）。"""
