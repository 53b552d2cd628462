"""
本地 Runtime（Unix domain socket 命令通道）。

实现定位：
- server 独占一个 socket 路径，逐个 accept 连接，每个连接读一条消息并交给 executor；
- client 只负责写一次 payload 然后退出；
- 不追求网络暴露/多租户；安全边界以 socket 文件权限为主（默认 0600）。
"""
