"""危机 / 困扰关键词识别。

RiskClassifier 是纯函数式组件：不做 I/O（词表在构造时注入），
不保存跨调用的可变状态，同一文本多次调用结果完全一致。

命中危机词时只记录命中的关键词与时间，绝不记录原始消息文本。
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import FrozenSet, Iterable, Optional

import yaml

from support_core.domain.models import RiskSignal
from support_core.infrastructure.logging.logger import logger

DEFAULT_TERMS_FILE = Path(__file__).resolve().parent / "risk_terms.yaml"

MULTIPLE_DISTRESS_INDICATOR = "multiple distress indicators"
DISTRESS_THRESHOLD = 2


def _normalise(text: str) -> str:
    # 兼容输入法产生的弯引号：can’t -> can't
    return text.replace("’", "'").replace("‘", "'").lower()


@dataclass(frozen=True)
class RiskTerms:
    """不可变的关键词表。"""

    crisis: FrozenSet[str]
    distress: FrozenSet[str]

    @classmethod
    def from_lists(cls, crisis: Iterable[str], distress: Iterable[str]) -> "RiskTerms":
        return cls(
            crisis=frozenset(_normalise(t).strip() for t in crisis if t and t.strip()),
            distress=frozenset(_normalise(t).strip() for t in distress if t and t.strip()),
        )

    @classmethod
    def load(cls, path: str | Path | None = None) -> "RiskTerms":
        """从 YAML 文件加载词表，文件需包含 crisis_terms / distress_terms 两个列表。"""

        p = Path(path) if path else DEFAULT_TERMS_FILE
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Risk terms file {p} is not a mapping")
        return cls.from_lists(data.get("crisis_terms") or [], data.get("distress_terms") or [])


class RiskClassifier:
    def __init__(self, terms: Optional[RiskTerms] = None):
        self._terms = terms or RiskTerms.load()

    @property
    def terms(self) -> RiskTerms:
        return self._terms

    def classify(self, text: str) -> RiskSignal:
        if not text:
            return RiskSignal()
        lowered = _normalise(text)

        crisis_hits = {term for term in self._terms.crisis if term in lowered}
        distress_hits = {term for term in self._terms.distress if term in lowered}
        distress_score = len(distress_hits)
        is_crisis = bool(crisis_hits) or distress_score >= DISTRESS_THRESHOLD

        signal = RiskSignal(
            is_crisis=is_crisis,
            matched_terms=frozenset(crisis_hits | distress_hits),
            distress_score=distress_score,
        )
        if is_crisis:
            indicators = sorted(crisis_hits) if crisis_hits else [MULTIPLE_DISTRESS_INDICATOR]
            self._report(indicators, distress_score)
        return signal

    @staticmethod
    def _report(indicators: list[str], distress_score: int) -> None:
        logger.warning(
            "Risk detected",
            extra={"extra": {
                "indicators": indicators,
                "distress_score": distress_score,
                "detected_at": datetime.now(timezone.utc).isoformat(),
            }},
        )
