"""消息安全检查：危机 / 困扰关键词识别。"""

from support_core.safety.risk_classifier import RiskClassifier, RiskTerms

__all__ = ["RiskClassifier", "RiskTerms"]
