# aether/echoes.py
"""
Community echoes: public, mood-themed boards. Same append/watch contract as a
chat room, partitioned by mood instead of room, without participant checks.
"""

from typing import Dict, List, Optional

from sqlalchemy import select, func

from aether import db as dbmod
from aether.db import SessionFactory, session_scope
from aether.errors import NotFoundError
from aether.feed import ChangeFeed, Callback, Subscription
from aether.models import EchoRecord
from aether.schemas import Echo, Mood

MOODS: Dict[str, Dict[str, str]] = {
    "calm": {"name": "Sea of Calm", "description": "Quiet reflection and deep inner peace."},
    "void": {"name": "The Void", "description": "Embracing the silence of the unknown."},
    "hope": {"name": "Fires of Hope", "description": "Reigniting the fire of hope within."},
    "woods": {"name": "Whispering Woods", "description": "Gentle support and collective growth."},
}

DEFAULT_NICKNAME = "Seeker"


def echo_topic(mood_id: str) -> str:
    return f"echoes/{mood_id}"


def to_echo(rec: EchoRecord) -> Echo:
    return Echo(id=rec.id, mood_id=rec.mood_id, nickname=rec.nickname, content=rec.content, timestamp=rec.timestamp)


def require_mood(mood_id: str) -> str:
    if mood_id not in MOODS:
        raise NotFoundError("Unknown mood", {"mood_id": mood_id, "known": sorted(MOODS)})
    return mood_id


class EchoBoard:
    def __init__(self, feed: ChangeFeed, session_factory: SessionFactory = dbmod.get_session):
        self.feed = feed
        self._session_factory = session_factory

    def post(self, mood_id: str, sender_id: Optional[str], nickname: Optional[str], content: str) -> Echo:
        require_mood(mood_id)
        with session_scope(self._session_factory) as s:
            rec = EchoRecord(mood_id=mood_id, sender_id=sender_id, nickname=nickname or DEFAULT_NICKNAME,
                             content=content, timestamp=dbmod.utcnow())
            s.add(rec)
            s.flush()
            echo = to_echo(rec)
        self.feed.publish(echo_topic(mood_id))
        return echo

    def list(self, mood_id: str) -> List[Echo]:
        require_mood(mood_id)
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(EchoRecord)
                .where(EchoRecord.mood_id == mood_id)
                .order_by(EchoRecord.timestamp.asc(), EchoRecord.id.asc())
            ).scalars().all()
            return [to_echo(r) for r in rows]

    def watch(self, mood_id: str, callback: Optional[Callback] = None) -> Subscription:
        require_mood(mood_id)
        return self.feed.subscribe(echo_topic(mood_id), lambda: self.list(mood_id), callback)

    def counts(self) -> Dict[str, int]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(select(EchoRecord.mood_id, func.count(EchoRecord.id)).group_by(EchoRecord.mood_id)).all()
        found = dict(rows)
        return {mood_id: found.get(mood_id, 0) for mood_id in MOODS}

    def moods(self) -> List[Mood]:
        counts = self.counts()
        return [
            Mood(id=mood_id, name=meta["name"], description=meta["description"], count=counts.get(mood_id, 0))
            for mood_id, meta in MOODS.items()
        ]
