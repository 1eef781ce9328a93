"""消息处理流水线：提示词构造、回复清理与编排。"""
