"""对外服务入口（供 HTTP 层调用）。"""
