# tests/test_orchestrator.py
import asyncio
import time

import pytest

from aether import llm_wrapper
from aether.moderation import InMemorySuspensionStore
from aether.orchestrator import SupportOrchestrator
from aether.schemas import Identity

SPEAKER = Identity(uid="speaker-a", display_name="Ana")


@pytest.fixture
def orch(fresh_db, monkeypatch):
    monkeypatch.setattr(llm_wrapper, "call_llm", lambda messages, **kw: {"text": "You are heard."})
    return SupportOrchestrator(suspensions=InMemorySuspensionStore())


def _run_with_ticker(coro):
    """Run `coro` next to a 10ms ticker; return (result, ticks)."""
    async def main():
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        try:
            result = await coro
        finally:
            task.cancel()
        return result, ticks

    return asyncio.run(main())


def test_speak_submits_pending_request(orch):
    resp = asyncio.run(orch.speak(SPEAKER, "device-a", "I feel so heavy today"))
    assert resp["status"] == "success"
    assert resp["reply"] == "You are heard."
    assert [r.id for r in orch.ledger.list_pending()] == [resp["request_id"]]


def test_speak_store_write_keeps_loop_responsive(orch, monkeypatch):
    submit = orch.ledger.submit

    def slow_submit(*args, **kwargs):
        time.sleep(0.3)
        return submit(*args, **kwargs)

    monkeypatch.setattr(orch.ledger, "submit", slow_submit)
    resp, ticks = _run_with_ticker(orch.speak(SPEAKER, "device-a", "I feel so heavy today"))
    assert resp["status"] == "success"
    assert ticks >= 10


def test_journal_store_write_keeps_loop_responsive(orch, monkeypatch):
    add = orch.journal.add

    def slow_add(*args, **kwargs):
        time.sleep(0.3)
        return add(*args, **kwargs)

    monkeypatch.setattr(orch.journal, "add", slow_add)
    resp, ticks = _run_with_ticker(orch.write_journal(SPEAKER, "a quiet evening"))
    assert resp["entry"]["content"] == "a quiet evening"
    assert ticks >= 10
