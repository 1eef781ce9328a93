"""流水线内部共享的数据模型。

- RiskSignal: 单条消息的危机/困扰关键词分析结果。
- GenerationRequest: 发给生成后端的请求（与具体后端无关）。
- GenerationResult: 后端返回的结果，要么是文本，要么是 GenError，二者取其一。

所有后端实现（RemoteChatBackend、LocalLlamaBackend）都只依赖这些模型。
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Literal, Optional


# 消息角色（持久化的 Turn 只会出现 user/assistant）
Role = Literal["user", "assistant"]

# 生成失败的分类
GenErrorKind = Literal[
    "unavailable",
    "timeout",
    "empty_response",
    "malformed_response",
    "unknown",
]


@dataclass(frozen=True)
class RiskSignal:
    """风险信号，只在一次流水线调用内存在，不落库。

    - is_crisis: 命中任一危机词，或困扰词命中数 >= 2。
    - matched_terms: 命中的全部词（危机词 + 困扰词）。
    - distress_score: 命中的困扰词数量。
    """

    is_crisis: bool = False
    matched_terms: FrozenSet[str] = field(default_factory=frozenset)
    distress_score: int = 0


@dataclass(frozen=True)
class GenerationRequest:
    """一次生成请求，由 PromptBuilder 构造，后端只读不改。"""

    system_prompt: str
    user_text: str
    max_tokens: int = 150
    temperature: float = 0.7


@dataclass(frozen=True)
class GenError:
    """生成失败描述。message 仅用于日志，不直接展示给用户。"""

    kind: GenErrorKind
    message: str = ""


@dataclass(frozen=True)
class GenerationResult:
    """后端调用结果：text 与 error 必须且只能有一个。"""

    text: Optional[str] = None
    error: Optional[GenError] = None

    def __post_init__(self) -> None:
        if (self.text is None) == (self.error is None):
            raise ValueError("GenerationResult needs exactly one of text or error")

    @classmethod
    def ok(cls, text: str) -> "GenerationResult":
        return cls(text=text)

    @classmethod
    def fail(cls, kind: GenErrorKind, message: str = "") -> "GenerationResult":
        return cls(error=GenError(kind=kind, message=message))

    @property
    def is_ok(self) -> bool:
        return self.error is None
