from typing import Iterable, Optional, Tuple

DEFAULT_REPLY = (
    "I understand you're reaching out. Could you tell me more about what's on your mind?"
)

# 各类指令模板残留的分隔符 / 轮次标记，按字面量删除
PROMPT_ARTIFACTS: Tuple[str, ...] = (
    "[INST]",
    "[/INST]",
    "<s>",
    "</s>",
    "<|im_start|>",
    "<|im_end|>",
    "<|system|>",
    "<|user|>",
    "<|assistant|>",
    "<|eot_id|>",
)


class ResponseSanitizer:
    """清理模型输出中的模板残留，保证返回非空文本。"""

    def __init__(self, artifacts: Iterable[str] = PROMPT_ARTIFACTS, default_reply: str = DEFAULT_REPLY):
        self._artifacts = tuple(a for a in artifacts if a)
        self._default_reply = default_reply

    @property
    def default_reply(self) -> str:
        return self._default_reply

    def sanitize(self, raw: Optional[str]) -> str:
        text = (raw or "").strip()
        for artifact in self._artifacts:
            text = text.replace(artifact, "")
        text = text.strip()
        return text or self._default_reply
