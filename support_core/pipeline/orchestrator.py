"""消息处理流水线编排。

顺序：校验 -> 风险识别 -> 后端可用性检查 -> 生成 -> 清理 -> 追加危机资源
-> 先写用户消息、再写助手消息 -> 返回回复。

校验之后的 2~6 步由 LangGraph 图执行（见 flows.graph），持久化在这里完成。
生成失败永远不会让请求失败：后端不可用与生成出错分别使用两条固定回复。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4
import logging
import threading
import time

from support_core.domain.conversation import ConversationStore, Turn
from support_core.domain.exceptions import StoreError, ValidationError
from support_core.flows.graph import PipelineComponents, build_graph
from support_core.flows.state import PipelineState, Stage
from support_core.infrastructure.logging.logger import logger
from support_core.pipeline.prompt_builder import PromptBuilder
from support_core.pipeline.sanitizer import ResponseSanitizer
from support_core.providers.base import GenerationBackend
from support_core.safety.risk_classifier import RiskClassifier

UNAVAILABLE_REPLY = (
    "⚠️ The AI service is not available right now. "
    "Please make sure the language model server is running and try again in a moment."
)
FALLBACK_REPLY = (
    "I'm here to listen. I'm having a brief technical difficulty, but please know that "
    "your wellbeing matters. If you're in crisis, please reach out to a crisis hotline "
    "or emergency services."
)

OutcomeStatus = Literal["ok", "invalid_input", "persist_failed", "cancelled"]

# 对外的历史消息里助手角色沿用前端约定的 "ai"
SENDER_BY_ROLE = {"user": "user", "assistant": "ai"}


@dataclass
class PipelineOutcome:
    """一次 run() 的结果。

    status 为 ok 以外的值时，reply 的含义：
    - invalid_input: 空字符串，没有任何写入。
    - persist_failed: 已经算好的回复，只是没能完整落库。
    - cancelled: 已经算好的回复，但调用方已取消，没有写入。
    """

    status: OutcomeStatus
    reply: str
    stage: Stage
    trace_id: str
    is_crisis: bool = False
    error_kind: Optional[str] = None
    user_turn: Optional[Turn] = None
    assistant_turn: Optional[Turn] = None


class PipelineOrchestrator:
    def __init__(
        self,
        classifier: RiskClassifier,
        prompt_builder: PromptBuilder,
        backend: GenerationBackend,
        sanitizer: ResponseSanitizer,
        store: ConversationStore,
        crisis_resources: str,
        unavailable_reply: str = UNAVAILABLE_REPLY,
        fallback_reply: str = FALLBACK_REPLY,
    ):
        self._classifier = classifier
        self._backend = backend
        self._store = store
        self._crisis_resources = crisis_resources
        self._fallback_reply = fallback_reply
        self._graph = build_graph(
            PipelineComponents(
                classifier=classifier,
                prompt_builder=prompt_builder,
                backend=backend,
                sanitizer=sanitizer,
                crisis_resources=crisis_resources,
                unavailable_reply=unavailable_reply,
                fallback_reply=fallback_reply,
            )
        )

    @property
    def backend(self) -> GenerationBackend:
        return self._backend

    @property
    def store(self) -> ConversationStore:
        return self._store

    def run(
        self,
        user_text: Optional[str],
        user_id: Any,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineOutcome:
        """处理一条消息，不向外抛异常。"""

        start_time = time.time()
        trace_id = f"tr-{uuid4().hex}"
        uid = str(user_id)
        log_ctx: Dict[str, Any] = {"trace_id": trace_id, "user_id": uid}

        # 1. 校验：空消息直接拒绝，不分类、不调用后端、不写库
        if user_text is None or not str(user_text).strip():
            self._log(logging.INFO, "Rejected empty message", log_ctx)
            return PipelineOutcome(status="invalid_input", reply="", stage="received", trace_id=trace_id)

        self._log(logging.INFO, "Received message", log_ctx, text_chars=len(user_text))

        # 2~6. 分类 / 生成 / 清理 / 危机资源
        state: PipelineState = {
            "trace_id": trace_id,
            "user_id": uid,
            "user_text": user_text,
            "stage": "received",
            "error_kind": None,
        }
        try:
            result = self._graph.invoke(state)
            reply = result["reply"]
            stage: Stage = result.get("stage", "sanitized")
            signal = result.get("signal")
            is_crisis = bool(signal and signal.is_crisis)
            error_kind = result.get("error_kind")
        except Exception as e:
            self._log(
                logging.ERROR,
                "Pipeline failed, using fallback reply",
                log_ctx,
                error=f"{type(e).__name__}: {e}",
            )
            reply = self._fallback_reply
            stage = "failed"
            error_kind = "unknown"
            # 图里的分类结果随异常丢失，这里重新分类，危机消息仍要附上求助资源
            is_crisis = self._classifier.classify(str(user_text)).is_crisis
            if is_crisis:
                reply = f"{reply}\n\n{self._crisis_resources}"

        outcome = PipelineOutcome(
            status="ok",
            reply=reply,
            stage=stage,
            trace_id=trace_id,
            is_crisis=is_crisis,
            error_kind=error_kind,
        )

        # 持久化开始前的取消：不写任何消息
        if cancel_event is not None and cancel_event.is_set():
            self._log(logging.INFO, "Cancelled before persistence", log_ctx)
            outcome.status = "cancelled"
            return outcome

        # 7. 先写用户消息，再写助手消息
        try:
            outcome.user_turn = self._store.append(Turn(user_id=uid, role="user", text=user_text))
            outcome.assistant_turn = self._store.append(Turn(user_id=uid, role="assistant", text=reply))
        except Exception as e:
            self._log(
                logging.ERROR,
                "Failed to persist turns",
                log_ctx,
                user_turn_written=outcome.user_turn is not None,
                error=f"{type(e).__name__}: {e}",
            )
            outcome.status = "persist_failed"
            outcome.stage = "failed"
            return outcome

        if outcome.stage != "failed":
            outcome.stage = "persisted"
            self._log(logging.INFO, "Persisted turns", log_ctx, stage=outcome.stage)
            outcome.stage = "done"
        self._log(
            logging.INFO,
            "Completed pipeline",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            is_crisis=is_crisis,
            error_kind=error_kind,
            user_turn_id=outcome.user_turn.id,
            assistant_turn_id=outcome.assistant_turn.id,
        )
        return outcome

    def process_message(
        self,
        user_text: Optional[str],
        user_id: Any,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """处理消息并返回回复文本。

        Raises:
            ValidationError: 消息为空（EMPTY_MESSAGE）。
            StoreError: 回复已生成但未能落库（STORE_WRITE_ERROR，extra["reply"] 为回复）。
        """

        outcome = self.run(user_text, user_id, cancel_event=cancel_event)
        if outcome.status == "invalid_input":
            raise ValidationError(code="EMPTY_MESSAGE", message="Message cannot be empty")
        if outcome.status == "persist_failed":
            raise StoreError(
                code="STORE_WRITE_ERROR",
                message="Reply could not be recorded",
                reply=outcome.reply,
                trace_id=outcome.trace_id,
            )
        return outcome.reply

    def get_history(self, user_id: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """返回用户的聊天记录（从旧到新）。"""

        uid = str(user_id)
        turns = self._store.list_recent(uid, limit) if limit else self._store.list_by_user(uid)
        return [
            {
                "id": t.id,
                "text": t.text,
                "sender": SENDER_BY_ROLE.get(t.role, t.role),
                "timestamp": t.created_at.isoformat() if t.created_at else None,
            }
            for t in turns
        ]

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
