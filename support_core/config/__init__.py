"""配置层：集中管理后端、生成参数、存储与日志配置（见 settings 模块）。"""
