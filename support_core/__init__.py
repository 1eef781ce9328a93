"""Support Core 顶层包。

该包提供心理支持聊天助手的消息处理流水线，
包括配置加载、领域模型、危机关键词识别、提示词构造、
生成后端适配（远程 HTTP / 本地模型）、回复清理、编排与持久化存储。
"""

from support_core.api.service import get_health, get_history, process_message

__all__ = ["process_message", "get_history", "get_health"]
