import logging
import tempfile
import threading
from pathlib import Path

import pytest

from support_core.domain.exceptions import StoreError, ValidationError
from support_core.domain.models import GenerationResult
from support_core.infrastructure.storage.json_store import JsonTurnStore
from support_core.pipeline.orchestrator import FALLBACK_REPLY, UNAVAILABLE_REPLY, PipelineOrchestrator
from support_core.pipeline.prompt_builder import PromptBuilder
from support_core.pipeline.sanitizer import ResponseSanitizer
from support_core.prompts import load_crisis_resources
from support_core.safety.risk_classifier import RiskClassifier

CRISIS_BLOCK = load_crisis_resources()


class FakeBackend:
    name = "fake"

    def __init__(self, result=None, available=True):
        self.result = result or GenerationResult.ok("I'm glad to hear that.")
        self.available = available
        self.requests = []
        self.probes = 0

    def generate(self, req):
        self.requests.append(req)
        return self.result

    def is_available(self):
        self.probes += 1
        return self.available

    def list_models(self):
        return ["fake-model"]

    def describe(self):
        return {"backend": "fake"}


class FlakyStore:
    """第 fail_on 次 append 时抛出 StoreError。"""

    def __init__(self, inner, fail_on):
        self.inner = inner
        self.fail_on = fail_on
        self.count = 0

    def append(self, turn):
        self.count += 1
        if self.count == self.fail_on:
            raise StoreError(code="STORE_WRITE_ERROR", message="disk full")
        return self.inner.append(turn)

    def list_by_user(self, user_id):
        return self.inner.list_by_user(user_id)

    def list_recent(self, user_id, limit=10):
        return self.inner.list_recent(user_id, limit)


def _orchestrator(backend, store):
    return PipelineOrchestrator(
        classifier=RiskClassifier(),
        prompt_builder=PromptBuilder(),
        backend=backend,
        sanitizer=ResponseSanitizer(),
        store=store,
        crisis_resources=CRISIS_BLOCK,
    )


def test_crisis_message_end_to_end():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        backend = FakeBackend(GenerationResult.ok("I'm so sorry you're feeling this way."))
        reply = _orchestrator(backend, store).process_message("I want to die", 1)

        assert reply.startswith("I'm so sorry you're feeling this way.")
        assert reply.endswith(CRISIS_BLOCK)
        assert "emotional distress" in backend.requests[0].system_prompt

        turns = store.list_by_user("1")
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[0].text == "I want to die"
        assert turns[1].text == reply
        assert turns[1].created_at >= turns[0].created_at


def test_empty_message_is_rejected_without_side_effects():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        backend = FakeBackend()
        orchestrator = _orchestrator(backend, store)

        for text in ("", "   ", None):
            outcome = orchestrator.run(text, 1)
            assert outcome.status == "invalid_input"
            assert outcome.stage == "received"

        with pytest.raises(ValidationError) as exc:
            orchestrator.process_message("", 1)
        assert exc.value.code == "EMPTY_MESSAGE"
        assert exc.value.http_status == 400
        assert store.list_by_user("1") == []
        assert backend.requests == []
        assert backend.probes == 0


def test_plain_reply_without_crisis_block():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        backend = FakeBackend(GenerationResult.ok("  I'm glad to hear that.  "))
        outcome = _orchestrator(backend, store).run("I had a good day at work", "u-1")

        assert outcome.status == "ok"
        assert outcome.stage == "done"
        assert outcome.reply == "I'm glad to hear that."
        assert outcome.is_crisis is False
        assert CRISIS_BLOCK not in outcome.reply
        assert "emotional distress" not in backend.requests[0].system_prompt


def test_stage_reaches_persisted_before_done(caplog):
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        with caplog.at_level(logging.INFO, logger="support_core"):
            outcome = _orchestrator(FakeBackend(), store).run("I had a good day", "u-2")

    assert outcome.stage == "done"
    messages = [r.getMessage() for r in caplog.records]
    assert messages.index("Persisted turns") < messages.index("Completed pipeline")
    persisted = next(r for r in caplog.records if r.getMessage() == "Persisted turns")
    assert persisted.extra["stage"] == "persisted"
    assert persisted.extra["trace_id"] == outcome.trace_id


def test_unavailable_backend_reply_is_persisted():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        backend = FakeBackend(available=False)
        reply = _orchestrator(backend, store).process_message("Can we talk?", 5)

        assert reply == UNAVAILABLE_REPLY
        assert backend.requests == []
        turns = store.list_by_user("5")
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[1].text == UNAVAILABLE_REPLY


def test_unavailable_backend_still_appends_crisis_block():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        reply = _orchestrator(FakeBackend(available=False), store).process_message("I want to end my life", 5)
        assert reply.startswith(UNAVAILABLE_REPLY)
        assert reply.endswith(CRISIS_BLOCK)


def test_generation_errors_map_to_generic_fallback():
    assert FALLBACK_REPLY != UNAVAILABLE_REPLY
    for kind in ("timeout", "empty_response", "malformed_response", "unavailable", "unknown"):
        with tempfile.TemporaryDirectory() as d:
            store = JsonTurnStore(root=Path(d) / ".storage")
            backend = FakeBackend(GenerationResult.fail(kind, "details"))
            outcome = _orchestrator(backend, store).run("How are you?", 9)
            assert outcome.reply == FALLBACK_REPLY
            assert outcome.error_kind == kind
            assert outcome.status == "ok"
            assert [t.text for t in store.list_by_user("9")] == ["How are you?", FALLBACK_REPLY]


def test_blank_backend_text_is_replaced_by_default_reply():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        sanitizer = ResponseSanitizer()
        backend = FakeBackend(GenerationResult.ok("[INST] [/INST]"))
        reply = _orchestrator(backend, store).process_message("hello", 3)
        assert reply == sanitizer.default_reply


def test_unexpected_error_degrades_to_fallback():
    class BrokenBackend(FakeBackend):
        def generate(self, req):
            raise RuntimeError("contract violated")

    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        outcome = _orchestrator(BrokenBackend(), store).run("hello", 3)
        assert outcome.reply == FALLBACK_REPLY
        assert outcome.stage == "failed"
        assert outcome.status == "ok"
        assert [t.role for t in store.list_by_user("3")] == ["user", "assistant"]


def test_unexpected_error_keeps_crisis_resources():
    class BrokenBackend(FakeBackend):
        def generate(self, req):
            raise RuntimeError("contract violated")

    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        outcome = _orchestrator(BrokenBackend(), store).run("I want to die", 1)
        assert outcome.stage == "failed"
        assert outcome.is_crisis is True
        assert outcome.reply.startswith(FALLBACK_REPLY)
        assert outcome.reply.endswith(CRISIS_BLOCK)

        turns = store.list_by_user("1")
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[1].text.endswith(CRISIS_BLOCK)


def test_persistence_failure_is_reported_with_reply():
    with tempfile.TemporaryDirectory() as d:
        inner = JsonTurnStore(root=Path(d) / ".storage")
        orchestrator = _orchestrator(FakeBackend(), FlakyStore(inner, fail_on=2))

        with pytest.raises(StoreError) as exc:
            orchestrator.process_message("I had a good day", 4)
        assert exc.value.extra["reply"] == "I'm glad to hear that."

        # 用户消息先写入，助手消息失败：不会出现没有提问的回复
        turns = inner.list_by_user("4")
        assert [t.role for t in turns] == ["user"]


def test_persistence_failure_on_first_write_leaves_nothing():
    with tempfile.TemporaryDirectory() as d:
        inner = JsonTurnStore(root=Path(d) / ".storage")
        outcome = _orchestrator(FakeBackend(), FlakyStore(inner, fail_on=1)).run("hi", 4)
        assert outcome.status == "persist_failed"
        assert outcome.reply == "I'm glad to hear that."
        assert outcome.user_turn is None
        assert inner.list_by_user("4") == []


def test_cancel_before_persistence_writes_nothing():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        cancel = threading.Event()
        cancel.set()
        outcome = _orchestrator(FakeBackend(), store).run("hello", 8, cancel_event=cancel)
        assert outcome.status == "cancelled"
        assert store.list_by_user("8") == []


def test_history_uses_sender_names():
    with tempfile.TemporaryDirectory() as d:
        store = JsonTurnStore(root=Path(d) / ".storage")
        orchestrator = _orchestrator(FakeBackend(), store)
        orchestrator.process_message("first", 2)
        orchestrator.process_message("second", 2)

        history = orchestrator.get_history(2)
        assert [h["sender"] for h in history] == ["user", "ai", "user", "ai"]
        assert [h["text"] for h in history][::2] == ["first", "second"]
        assert all(h["timestamp"] for h in history)

        recent = orchestrator.get_history(2, limit=2)
        assert [h["text"] for h in recent] == ["second", "I'm glad to hear that."]
