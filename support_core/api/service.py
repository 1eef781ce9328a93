"""对外 API 服务模块。

提供简化的函数接口供上层（HTTP 层）调用。调用方负责鉴权，
这里收到的 user_id 视为已认证的不透明标识。
"""

from typing import Any, Dict, List, Optional

from support_core.config.settings import settings
from support_core.domain.conversation import ConversationStore
from support_core.domain.exceptions import BackendError
from support_core.infrastructure.logging.logger import logger
from support_core.infrastructure.storage.json_store import JsonTurnStore
from support_core.pipeline.orchestrator import PipelineOrchestrator
from support_core.pipeline.prompt_builder import PromptBuilder
from support_core.pipeline.sanitizer import ResponseSanitizer
from support_core.prompts import load_crisis_resources
from support_core.providers import create_backend
from support_core.providers.base import GenerationBackend
from support_core.providers.local_client import LocalLlamaBackend
from support_core.providers.registry import get_backend_config
from support_core.safety.risk_classifier import RiskClassifier, RiskTerms


_orchestrator: Optional[PipelineOrchestrator] = None


def build_orchestrator(
    backend: Optional[GenerationBackend] = None,
    store: Optional[ConversationStore] = None,
) -> PipelineOrchestrator:
    """按配置组装流水线；backend/store 可由调用方注入。"""

    if backend is None:
        backend = create_backend()
        if isinstance(backend, LocalLlamaBackend):
            try:
                backend.open()
            except BackendError as e:
                # 模型加载失败时后端保持不可用，请求走“服务不可用”回复
                logger.error("Local model failed to load", extra={"extra": {"code": e.code, "error": e.message}})
    return PipelineOrchestrator(
        classifier=RiskClassifier(RiskTerms.load(settings.risk_terms_file)),
        prompt_builder=PromptBuilder(
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            word_limit=settings.reply_word_limit,
            locale=settings.prompt_locale,
        ),
        backend=backend,
        sanitizer=ResponseSanitizer(),
        store=store or JsonTurnStore(root=settings.storage_root),
        crisis_resources=load_crisis_resources(settings.crisis_resources_file, settings.prompt_locale),
    )


def get_default_orchestrator() -> PipelineOrchestrator:
    """获取默认的流水线实例（单例）。"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def process_message(user_text: str, user_id: Any) -> str:
    """处理一条用户消息，返回助手回复。

    Args:
        user_text: 用户输入内容
        user_id: 已认证用户的标识

    Returns:
        回复文本（命中危机时末尾带求助资源）

    Raises:
        ValidationError: 消息为空
        StoreError: 回复未能落库（extra["reply"] 中仍有回复文本）
    """
    orchestrator = get_default_orchestrator()
    return orchestrator.process_message(user_text, user_id)


def get_history(user_id: Any, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """获取用户的聊天记录。

    Args:
        user_id: 用户标识
        limit: 只返回最近 limit 条（可选，上限为 max_history_messages）

    Returns:
        消息列表，每项包含 id, text, sender, timestamp
    """
    cap = settings.max_history_messages
    effective = min(limit, cap) if limit else None
    history = get_default_orchestrator().get_history(user_id, limit=effective)
    if effective is None and len(history) > cap:
        history = history[-cap:]
    return history


def get_health() -> Dict[str, Any]:
    """后端健康检查。

    Returns:
        包含 status, aiService, config, availableModels, ready 的字典
    """
    backend = get_default_orchestrator().backend
    available = backend.is_available()
    try:
        label = get_backend_config(backend.name).label
    except KeyError:
        label = backend.name
    return {
        "status": "healthy" if available else "unavailable",
        "aiService": label,
        "config": backend.describe(),
        "availableModels": backend.list_models() if available else [],
        "ready": available,
    }


def shutdown() -> None:
    """释放后端资源（本地模型句柄）。"""
    global _orchestrator
    if _orchestrator is None:
        return
    backend = _orchestrator.backend
    closer = getattr(backend, "close", None)
    if callable(closer):
        closer()
    _orchestrator = None
