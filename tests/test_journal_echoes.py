# tests/test_journal_echoes.py
import asyncio

import pytest

from aether import llm_wrapper
from aether.echoes import DEFAULT_NICKNAME, MOODS, EchoBoard
from aether.errors import NotFoundError
from aether.feed import ChangeFeed
from aether.journal import DEFAULT_DISTRIBUTION, JournalService, mood_distribution


@pytest.fixture
def feed(fresh_db):
    return ChangeFeed()


def test_journal_entries_are_private_and_newest_first(feed):
    journal = JournalService(feed)
    first = journal.add("u1", "a quiet morning")
    second = journal.add("u1", "a heavy evening")
    journal.add("u2", "someone else's page")

    assert [e.id for e in journal.list_for("u1")] == [second.id, first.id]
    assert [e.content for e in journal.list_for("u2")] == ["someone else's page"]


def test_insights_default_without_keyword_hits(feed):
    journal = JournalService(feed)
    journal.add("u1", "nothing in particular")
    insights = journal.insights("u1")
    assert insights["has_data"] is False
    assert insights["entries"] == 1
    assert insights["distribution"] == DEFAULT_DISTRIBUTION


def test_mood_distribution_percentages():
    dist = mood_distribution(["so calm and quiet", "a sad day"])
    assert dist["calm"] == pytest.approx(200 / 3)
    assert dist["sorrow"] == pytest.approx(100 / 3)
    assert dist["joy"] == 0
    assert sum(dist.values()) == pytest.approx(100)


def test_reflection_falls_back_when_provider_fails(feed, monkeypatch):
    def broken(messages, **kw):
        raise RuntimeError("offline")

    monkeypatch.setattr(llm_wrapper, "call_llm", broken)
    reflection = asyncio.run(JournalService(feed).reflect("I feel sad tonight"))
    assert reflection.startswith("AI Reflection:")
    assert "first step towards peace" in reflection


def test_echo_board_appends_in_order(feed):
    board = EchoBoard(feed)
    board.post("calm", "u1", None, "breathing slowly")
    board.post("calm", "u2", "Wanderer", "same here")
    board.post("hope", "u1", "Ana", "tomorrow")

    echoes = board.list("calm")
    assert [e.content for e in echoes] == ["breathing slowly", "same here"]
    assert echoes[0].nickname == DEFAULT_NICKNAME
    counts = {m.id: m.count for m in board.moods()}
    assert counts == {"calm": 2, "void": 0, "hope": 1, "woods": 0}
    assert board.counts() == counts
    assert set(counts) == set(MOODS)


def test_unknown_mood_rejected(feed):
    with pytest.raises(NotFoundError):
        EchoBoard(feed).post("rage", "u1", None, "hello")
