# aether/chat.py
"""
ChatSession: per-room append-only message log.

Messages are totally ordered by (server timestamp, insertion id). Participants
can only append; deletion is an administrative operation. Content reaching
post() must already have passed the content guard.
"""

from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from aether import db as dbmod
from aether.db import SessionFactory, session_scope
from aether.errors import ForbiddenError, NotFoundError
from aether.feed import ChangeFeed, Callback, Subscription
from aether.models import ChatMessageRecord, ChatRoomRecord
from aether.schemas import ChatMessage, ChatRoom

SYSTEM_SENDER_ID = "system"
SYSTEM_SENDER_NAME = "Aether"
CONNECTED_NOTICE = "Connection Established. Speak freely."


def room_topic(room_id: str) -> str:
    return f"rooms/{room_id}"


def to_chat_message(rec: ChatMessageRecord) -> ChatMessage:
    return ChatMessage(
        id=rec.id,
        room_id=rec.room_id,
        sender_id=rec.sender_id,
        sender_name=rec.sender_name,
        content=rec.content,
        timestamp=rec.timestamp,
    )


def to_chat_room(rec: ChatRoomRecord) -> ChatRoom:
    return ChatRoom(
        room_id=rec.room_id,
        request_id=rec.request_id,
        speaker_id=rec.speaker_id,
        listener_id=rec.listener_id,
        created_at=rec.created_at,
    )


def add_message(session: Session, room_id: str, sender_id: str, sender_name: str, content: str) -> ChatMessageRecord:
    """Stage a message inside an open transaction."""
    rec = ChatMessageRecord(
        room_id=room_id,
        sender_id=sender_id,
        sender_name=sender_name,
        content=content,
        timestamp=dbmod.utcnow(),
    )
    session.add(rec)
    return rec


class ChatSession:
    def __init__(self, feed: ChangeFeed, session_factory: SessionFactory = dbmod.get_session):
        self.feed = feed
        self._session_factory = session_factory

    def open_room(self, session: Session, room_id: str, speaker_id: str, listener_id: str,
                  request_id: Optional[str] = None):
        """Create the room record and its connection notice inside the caller's transaction."""
        session.add(ChatRoomRecord(
            room_id=room_id,
            request_id=request_id,
            speaker_id=speaker_id,
            listener_id=listener_id,
            created_at=dbmod.utcnow(),
        ))
        add_message(session, room_id, SYSTEM_SENDER_ID, SYSTEM_SENDER_NAME, CONNECTED_NOTICE)

    def get_room(self, room_id: str) -> Optional[ChatRoom]:
        with session_scope(self._session_factory) as s:
            rec = s.execute(
                select(ChatRoomRecord).where(ChatRoomRecord.room_id == room_id)
            ).scalar_one_or_none()
            return to_chat_room(rec) if rec else None

    def require_participant(self, room_id: str, user_id: str) -> ChatRoom:
        room = self.get_room(room_id)
        if room is None:
            raise NotFoundError("Room not found", {"room_id": room_id})
        if user_id not in (room.speaker_id, room.listener_id):
            raise ForbiddenError("Not a participant of this room", {"room_id": room_id})
        return room

    def post(self, room_id: str, sender_id: str, sender_name: str, content: str) -> ChatMessage:
        self.require_participant(room_id, sender_id)
        with session_scope(self._session_factory) as s:
            rec = add_message(s, room_id, sender_id, sender_name, content)
            s.flush()
            message = to_chat_message(rec)
        self.feed.publish(room_topic(room_id))
        return message

    def messages(self, room_id: str) -> List[ChatMessage]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(ChatMessageRecord)
                .where(ChatMessageRecord.room_id == room_id)
                .order_by(ChatMessageRecord.timestamp.asc(), ChatMessageRecord.id.asc())
            ).scalars().all()
            return [to_chat_message(r) for r in rows]

    def watch(self, room_id: str, callback: Optional[Callback] = None) -> Subscription:
        return self.feed.subscribe(room_topic(room_id), lambda: self.messages(room_id), callback)

    # --- administrative -----------------------------------------------------
    def list_rooms(self) -> List[ChatRoom]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(ChatRoomRecord).order_by(ChatRoomRecord.created_at.desc(), ChatRoomRecord.id.desc())
            ).scalars().all()
            return [to_chat_room(r) for r in rows]

    def delete_message(self, message_id: int) -> bool:
        with session_scope(self._session_factory) as s:
            rec = s.get(ChatMessageRecord, message_id)
            if rec is None:
                return False
            room_id = rec.room_id
            s.delete(rec)
        self.feed.publish(room_topic(room_id))
        return True

    def delete_room(self, room_id: str) -> bool:
        with session_scope(self._session_factory) as s:
            s.execute(delete(ChatMessageRecord).where(ChatMessageRecord.room_id == room_id))
            result = s.execute(delete(ChatRoomRecord).where(ChatRoomRecord.room_id == room_id))
            removed = result.rowcount > 0
        self.feed.publish(room_topic(room_id))
        return removed
