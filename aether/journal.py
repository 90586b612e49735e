# aether/journal.py
"""
Private journal: raw entries owned by their author, an AI reflection on each new
entry, and a keyword-based mood distribution over the author's history.
"""

from typing import Dict, List, Optional

from sqlalchemy import select

from aether import db as dbmod
from aether import llm_wrapper
from aether import prompts
from aether.db import SessionFactory, session_scope
from aether.feed import ChangeFeed, Callback, Subscription
from aether.models import JournalEntryRecord
from aether.schemas import JournalEntry

MOOD_KEYWORDS: Dict[str, tuple] = {
    "calm": ("quiet", "peace", "calm", "relax", "still", "serene", "tranquil"),
    "joy": ("happy", "love", "content", "great", "smile", "bliss", "delight"),
    "sorrow": ("sad", "pain", "heavy", "cry", "dark", "grief", "lonely"),
    "hope": ("future", "bright", "forward", "better", "try", "trust", "light"),
}

# shown before the user has written anything that matches a mood
DEFAULT_DISTRIBUTION = {"calm": 40.0, "joy": 20.0, "sorrow": 30.0, "hope": 10.0}


def journal_topic(user_id: str) -> str:
    return f"journal/{user_id}"


def to_journal_entry(rec: JournalEntryRecord) -> JournalEntry:
    return JournalEntry(id=rec.id, user_id=rec.user_id, content=rec.content, timestamp=rec.timestamp)


def mood_distribution(entries: List[str]) -> Optional[Dict[str, float]]:
    """Percentage per mood from keyword hits; None when nothing matched."""
    counts = {mood: 0 for mood in MOOD_KEYWORDS}
    for text in entries:
        lowered = text.lower()
        for mood, words in MOOD_KEYWORDS.items():
            counts[mood] += sum(1 for w in words if w in lowered)
    total = sum(counts.values())
    if total == 0:
        return None
    return {mood: (n / total) * 100 for mood, n in counts.items()}


class JournalService:
    def __init__(self, feed: ChangeFeed, session_factory: SessionFactory = dbmod.get_session):
        self.feed = feed
        self._session_factory = session_factory

    def add(self, user_id: str, content: str) -> JournalEntry:
        with session_scope(self._session_factory) as s:
            rec = JournalEntryRecord(user_id=user_id, content=content, timestamp=dbmod.utcnow())
            s.add(rec)
            s.flush()
            entry = to_journal_entry(rec)
        self.feed.publish(journal_topic(user_id))
        return entry

    def list_for(self, user_id: str) -> List[JournalEntry]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(JournalEntryRecord)
                .where(JournalEntryRecord.user_id == user_id)
                .order_by(JournalEntryRecord.timestamp.desc(), JournalEntryRecord.id.desc())
            ).scalars().all()
            return [to_journal_entry(r) for r in rows]

    def watch(self, user_id: str, callback: Optional[Callback] = None) -> Subscription:
        return self.feed.subscribe(journal_topic(user_id), lambda: self.list_for(user_id), callback)

    async def reflect(self, content: str) -> str:
        text = await llm_wrapper.rewrite_best_effort(prompts.journal_prompt(content))
        return text or prompts.journal_fallback(content)

    def insights(self, user_id: str) -> Dict:
        entries = [e.content for e in self.list_for(user_id)]
        distribution = mood_distribution(entries)
        return {
            "has_data": distribution is not None,
            "entries": len(entries),
            "distribution": distribution or dict(DEFAULT_DISTRIBUTION),
        }
