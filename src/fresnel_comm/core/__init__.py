"""核心层：命令执行器、结构化结果与错误分类。"""
