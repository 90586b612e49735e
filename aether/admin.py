# aether/admin.py
"""
AdminConsole: read and delete access over every collection.

Deleting a report resolves it; deleting a ban lifts the suspension; deleting a
chat message is the only way a room log ever shrinks. Journal entries are
scanned for crisis vocabulary so specialists can follow up after the fact.
"""

from typing import Any, Dict, List

from sqlalchemy import select, delete

from aether import db as dbmod
from aether import monitoring
from aether.chat import ChatSession, room_topic
from aether.db import SessionFactory, session_scope
from aether.echoes import echo_topic, to_echo
from aether.errors import NotFoundError
from aether.feed import ChangeFeed
from aether.journal import journal_topic, to_journal_entry
from aether.ledger import REQUESTS_TOPIC, RequestLedger
from aether.models import (
    BanRecord, ChatMessageRecord, ChatRoomRecord, EchoRecord,
    HelpRequestRecord, JournalEntryRecord, ReportRecord,
)
from aether.moderation import to_report
from aether.schemas import Ban, JournalEntry

JOURNAL_ALERT_TERMS = ("die", "suicide", "hurt", "kill")

# collection name -> (model, id column)
COLLECTIONS = {
    "requests": (HelpRequestRecord, HelpRequestRecord.request_id),
    "chats": (ChatRoomRecord, ChatRoomRecord.room_id),
    "messages": (ChatMessageRecord, ChatMessageRecord.id),
    "reports": (ReportRecord, ReportRecord.id),
    "bans": (BanRecord, BanRecord.id),
    "journal": (JournalEntryRecord, JournalEntryRecord.id),
    "community_echoes": (EchoRecord, EchoRecord.id),
}


def _to_ban(rec: BanRecord) -> Ban:
    return Ban(id=rec.id, client_id=rec.client_id, user_id=rec.user_id, reason=rec.reason,
               expires_at=int(rec.expires_at), created_at=rec.created_at)


def _is_alert(entry: JournalEntry) -> bool:
    lowered = entry.content.lower()
    return any(term in lowered for term in JOURNAL_ALERT_TERMS)


def _require_collection(collection: str):
    if collection not in COLLECTIONS:
        raise NotFoundError("Unknown collection", {"collection": collection, "known": sorted(COLLECTIONS)})
    return COLLECTIONS[collection]


class AdminConsole:
    def __init__(self, ledger: RequestLedger, chats: ChatSession, feed: ChangeFeed,
                 session_factory: SessionFactory = dbmod.get_session):
        self.ledger = ledger
        self.chats = chats
        self.feed = feed
        self._session_factory = session_factory

    def _all(self, model, order_col) -> List[Any]:
        with session_scope(self._session_factory) as s:
            return s.execute(select(model).order_by(order_col.desc())).scalars().all()

    def journal_entries(self) -> List[JournalEntry]:
        return [to_journal_entry(r) for r in self._all(JournalEntryRecord, JournalEntryRecord.timestamp)]

    def crisis_alerts(self) -> List[JournalEntry]:
        return [e for e in self.journal_entries() if _is_alert(e)]

    def overview(self) -> Dict[str, List[Any]]:
        journal = self.journal_entries()
        return {
            "requests": self.ledger.list_all(),
            "chats": self.chats.list_rooms(),
            "bans": [_to_ban(r) for r in self._all(BanRecord, BanRecord.created_at)],
            "reports": [to_report(r) for r in self._all(ReportRecord, ReportRecord.reported_at)],
            "journal": journal,
            "crisis_alerts": [e for e in journal if _is_alert(e)],
            "community_echoes": [to_echo(r) for r in self._all(EchoRecord, EchoRecord.timestamp)],
        }

    def room_messages(self, room_id: str):
        if self.chats.get_room(room_id) is None:
            raise NotFoundError("Room not found", {"room_id": room_id})
        return self.chats.messages(room_id)

    def delete_item(self, collection: str, item_id: str):
        _require_collection(collection)
        if collection == "requests":
            removed = self.ledger.delete(item_id)
        elif collection == "chats":
            removed = self.chats.delete_room(item_id)
        elif collection == "messages":
            removed = self.chats.delete_message(_int_id(item_id))
        else:
            removed = self._delete_row(collection, _int_id(item_id))
        if not removed:
            raise NotFoundError("Item not found", {"collection": collection, "id": item_id})
        monitoring.logger.info("Admin deleted item", extra={"collection": collection, "id": item_id})

    def _delete_row(self, collection: str, item_id: int) -> bool:
        model, id_col = COLLECTIONS[collection]
        with session_scope(self._session_factory) as s:
            rec = s.execute(select(model).where(id_col == item_id)).scalar_one_or_none()
            if rec is None:
                return False
            topic = _topic_for(collection, rec)
            s.delete(rec)
        if topic:
            self.feed.publish(topic)
        return True

    def wipe(self, collection: str) -> int:
        model, _ = _require_collection(collection)
        with session_scope(self._session_factory) as s:
            topics = set()
            if collection in ("journal", "community_echoes", "messages", "chats"):
                for rec in s.execute(select(model)).scalars():
                    topics.add(_topic_for(collection, rec))
            if collection == "chats":
                s.execute(delete(ChatMessageRecord))
            result = s.execute(delete(model))
            count = result.rowcount
        if collection == "requests":
            topics.add(REQUESTS_TOPIC)
        for topic in topics:
            if topic:
                self.feed.publish(topic)
        monitoring.logger.warning("Admin wiped collection", extra={"collection": collection, "count": count})
        return count


def _int_id(item_id: str) -> int:
    try:
        return int(item_id)
    except (TypeError, ValueError):
        raise NotFoundError("Item not found", {"id": item_id})


def _topic_for(collection: str, rec) -> str:
    if collection == "journal":
        return journal_topic(rec.user_id)
    if collection == "community_echoes":
        return echo_topic(rec.mood_id)
    if collection in ("messages", "chats"):
        return room_topic(rec.room_id)
    return ""
