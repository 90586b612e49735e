# tests/test_llm_rewrite.py
"""
Best-effort rewrite: bounded by a timeout, never raises, never blocks the flow.
"""
import asyncio
import time

from aether import llm_wrapper
from aether import prompts


def test_mock_reply_never_echoes_input(monkeypatch):
    monkeypatch.setattr(llm_wrapper, "MOCK_LLM", True)
    resp = llm_wrapper.call_llm([{"role": "user", "content": "my secret sentence"}])
    assert resp["text"] == llm_wrapper.MOCK_REPLY
    assert "secret" not in resp["text"]
    assert resp["raw"] == {"mock": True}


def test_rewrite_returns_provider_text(monkeypatch):
    monkeypatch.setattr(llm_wrapper, "call_llm", lambda messages, **kw: {"text": "  You are heard.  "})
    assert asyncio.run(llm_wrapper.rewrite_best_effort("hello")) == "You are heard."


def test_rewrite_timeout_returns_none(monkeypatch):
    def slow(messages, **kw):
        time.sleep(0.5)
        return {"text": "too late"}

    monkeypatch.setattr(llm_wrapper, "call_llm", slow)
    assert asyncio.run(llm_wrapper.rewrite_best_effort("hello", timeout=0.05)) is None


def test_rewrite_failure_returns_none(monkeypatch):
    def broken(messages, **kw):
        raise RuntimeError("LLM call failed (openai): boom")

    monkeypatch.setattr(llm_wrapper, "call_llm", broken)
    assert asyncio.run(llm_wrapper.rewrite_best_effort("hello")) is None


def test_rewrite_empty_text_returns_none(monkeypatch):
    monkeypatch.setattr(llm_wrapper, "call_llm", lambda messages, **kw: {"text": "   "})
    assert asyncio.run(llm_wrapper.rewrite_best_effort("hello")) is None


def test_speaker_prompt_carries_message_and_language():
    prompt = prompts.speaker_prompt("I feel alone")
    assert "I feel alone" in prompt
    assert prompts.RESPONSE_LANGUAGE in prompt


def test_journal_fallback_by_keyword():
    assert prompts.journal_fallback("today was so heavy").startswith(prompts.REFLECTION_PREFIX)
    assert "first step towards peace" in prompts.journal_fallback("I am sad")
    assert "beacon" in prompts.journal_fallback("a great day")
    assert "deep breath" in prompts.journal_fallback("feeling anxious")
    assert "absolute safety" in prompts.journal_fallback("nothing much")
