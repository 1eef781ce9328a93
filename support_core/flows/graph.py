"""LangGraph construction and node implementations for the reply pipeline.

Graph: classify -> check_backend -> (generate | unavailable) -> sanitize -> attach_resources.
Persistence happens outside the graph, in PipelineOrchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from support_core.flows.state import PipelineState
from support_core.infrastructure.logging.logger import logger
from support_core.pipeline.prompt_builder import PromptBuilder
from support_core.pipeline.sanitizer import ResponseSanitizer
from support_core.providers.base import GenerationBackend
from support_core.safety.risk_classifier import RiskClassifier


@dataclass(frozen=True)
class PipelineComponents:
    classifier: RiskClassifier
    prompt_builder: PromptBuilder
    backend: GenerationBackend
    sanitizer: ResponseSanitizer
    crisis_resources: str
    unavailable_reply: str
    fallback_reply: str


def _ctx(state: PipelineState, **fields) -> dict:
    payload = {"trace_id": state.get("trace_id"), "user_id": state.get("user_id")}
    payload.update(fields)
    return {"extra": payload}


def classify_node(state: PipelineState, c: PipelineComponents) -> PipelineState:
    signal = c.classifier.classify(state["user_text"])
    state["signal"] = signal
    state["stage"] = "classified"
    logger.info(
        "classify_node.end",
        extra=_ctx(state, is_crisis=signal.is_crisis, distress_score=signal.distress_score),
    )
    return state


def check_backend_node(state: PipelineState, c: PipelineComponents) -> PipelineState:
    available = bool(c.backend.is_available())
    state["backend_available"] = available
    if not available:
        logger.warning("check_backend_node.unavailable", extra=_ctx(state, backend=c.backend.name))
    return state


def unavailable_node(state: PipelineState, c: PipelineComponents) -> PipelineState:
    state["request"] = None
    state["draft"] = c.unavailable_reply
    state["error_kind"] = "unavailable"
    state["stage"] = "generated"
    return state


def generate_node(state: PipelineState, c: PipelineComponents) -> PipelineState:
    req = c.prompt_builder.build(state["signal"], state["user_text"])
    state["request"] = req
    logger.info(
        "generate_node.start",
        extra=_ctx(state, backend=c.backend.name, max_tokens=req.max_tokens, temperature=req.temperature),
    )
    result = c.backend.generate(req)
    if result.is_ok:
        state["draft"] = result.text or ""
        state["error_kind"] = None
        logger.info("generate_node.end", extra=_ctx(state, reply_chars=len(state["draft"])))
    else:
        state["draft"] = c.fallback_reply
        state["error_kind"] = result.error.kind
        logger.warning(
            "generate_node.failed",
            extra=_ctx(state, error_kind=result.error.kind, error=result.error.message),
        )
    state["stage"] = "generated"
    return state


def sanitize_node(state: PipelineState, c: PipelineComponents) -> PipelineState:
    state["reply"] = c.sanitizer.sanitize(state.get("draft"))
    state["stage"] = "sanitized"
    return state


def attach_resources_node(state: PipelineState, c: PipelineComponents) -> PipelineState:
    signal = state.get("signal")
    if signal is not None and signal.is_crisis and c.crisis_resources:
        state["reply"] = f"{state['reply']}\n\n{c.crisis_resources}"
        logger.info("attach_resources_node.attached", extra=_ctx(state))
    return state


def backend_router(state: PipelineState) -> str:
    if state.get("backend_available"):
        return "generate"
    return "unavailable"


def build_graph(components: PipelineComponents) -> CompiledStateGraph:
    graph = StateGraph(PipelineState)
    graph.add_node("classify", lambda s: classify_node(s, components))
    graph.add_node("check_backend", lambda s: check_backend_node(s, components))
    graph.add_node("generate", lambda s: generate_node(s, components))
    graph.add_node("unavailable", lambda s: unavailable_node(s, components))
    graph.add_node("sanitize", lambda s: sanitize_node(s, components))
    graph.add_node("attach_resources", lambda s: attach_resources_node(s, components))
    graph.set_entry_point("classify")
    graph.add_edge("classify", "check_backend")
    graph.add_conditional_edges(
        "check_backend",
        backend_router,
        {"generate": "generate", "unavailable": "unavailable"},
    )
    graph.add_edge("generate", "sanitize")
    graph.add_edge("unavailable", "sanitize")
    graph.add_edge("sanitize", "attach_resources")
    graph.add_edge("attach_resources", END)
    return graph.compile()
