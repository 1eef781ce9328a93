"""领域层模型与协议。

包含：
- models: RiskSignal / GenerationRequest / GenerationResult 等流水线数据模型。
- conversation: Turn 存储模型及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
