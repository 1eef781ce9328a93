"""系统提示词构造。

根据 RiskSignal 在两套模板之间二选一，并与用户消息一起打包为
与后端无关的 GenerationRequest。模板在构造时读入，build 本身不做 I/O。
"""

from typing import Optional

from support_core.domain.models import GenerationRequest, RiskSignal
from support_core.prompts import load_prompt

DEFAULT_MAX_TOKENS = 150
DEFAULT_TEMPERATURE = 0.7
DEFAULT_WORD_LIMIT = 100


class PromptBuilder:
    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        word_limit: int = DEFAULT_WORD_LIMIT,
        locale: str = "en",
        crisis_template: Optional[str] = None,
        default_template: Optional[str] = None,
    ):
        self._max_tokens = max_tokens
        self._temperature = temperature
        crisis_template = crisis_template or load_prompt("crisis_system", locale)
        default_template = default_template or load_prompt("default_system", locale)
        # 字数上限在构造时一次性填入
        self._crisis_prompt = crisis_template.replace("{word_limit}", str(word_limit))
        self._default_prompt = default_template.replace("{word_limit}", str(word_limit))

    def system_prompt_for(self, signal: RiskSignal) -> str:
        return self._crisis_prompt if signal.is_crisis else self._default_prompt

    def build(self, signal: RiskSignal, user_text: str) -> GenerationRequest:
        return GenerationRequest(
            system_prompt=self.system_prompt_for(signal),
            user_text=user_text,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
