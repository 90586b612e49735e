# aether/models.py
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text

from aether.db import Base, utcnow


class HelpRequestRecord(Base):
    __tablename__ = "requests"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), unique=True, index=True, nullable=False)
    speaker_id = Column(String(128), index=True, nullable=False)
    speaker_name = Column(String(128), nullable=False)
    summary = Column(Text, nullable=False)
    status = Column(String(16), index=True, nullable=False, default="pending")
    room_id = Column(String(256), nullable=True)
    listener_id = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    accepted_at = Column(DateTime, nullable=True)


class ChatRoomRecord(Base):
    __tablename__ = "chats"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(256), unique=True, index=True, nullable=False)
    request_id = Column(String(64), nullable=True)
    speaker_id = Column(String(128), nullable=False)
    listener_id = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ChatMessageRecord(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(256), index=True, nullable=False)
    sender_id = Column(String(128), nullable=False)
    sender_name = Column(String(128), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)


class ReportRecord(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(256), nullable=True)
    reporter_id = Column(String(128), nullable=True)
    type = Column(String(32), nullable=False, default="Harassment")
    status = Column(String(16), nullable=False, default="pending")
    reported_at = Column(DateTime, default=utcnow, nullable=False)


class BanRecord(Base):
    __tablename__ = "bans"

    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(String(256), unique=True, index=True, nullable=False)
    user_id = Column(String(128), nullable=True)
    reason = Column(String(64), nullable=True)
    expires_at = Column(BigInteger, nullable=False)  # epoch milliseconds
    created_at = Column(DateTime, default=utcnow, nullable=False)


class JournalEntryRecord(Base):
    __tablename__ = "journal"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(128), index=True, nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)


class EchoRecord(Base):
    __tablename__ = "community_echoes"

    id = Column(Integer, primary_key=True, index=True)
    mood_id = Column(String(32), index=True, nullable=False)
    sender_id = Column(String(128), nullable=True)
    nickname = Column(String(128), nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False)


class UserAccount(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    uid = Column(String(64), unique=True, index=True, nullable=False)
    credential_key = Column(String(256), unique=True, index=True, nullable=False)
    password_hash = Column(String(256), nullable=False)
    display_name = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class SessionToken(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(128), unique=True, index=True, nullable=False)
    uid = Column(String(64), index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
