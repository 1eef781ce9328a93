"""State definition for the reply pipeline graph."""

from __future__ import annotations

from typing import Literal, Optional, TypedDict

from support_core.domain.models import GenerationRequest, RiskSignal

Stage = Literal["received", "classified", "generated", "sanitized", "persisted", "done", "failed"]


class PipelineState(TypedDict, total=False):
    """State shared across graph nodes for one message."""

    trace_id: str
    user_id: str
    user_text: str
    stage: Stage
    signal: RiskSignal
    backend_available: bool
    request: Optional[GenerationRequest]
    error_kind: Optional[str]
    draft: str
    reply: str
