# aether/schemas.py
from enum import Enum
from typing import List, Optional, Dict
from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"


class Verdict(str, Enum):
    ALLOW = "allow"
    BLOCK_PRIVACY = "block-privacy"
    BLOCK_CRISIS = "block-crisis"
    BLOCK_TOXICITY = "block-toxicity"


class Identity(BaseModel):
    uid: str
    display_name: str


class HelpRequest(BaseModel):
    id: str
    speaker_id: str
    speaker_name: str
    summary: str
    status: RequestStatus
    room_id: Optional[str] = None
    listener_id: Optional[str] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def pairing_fields_follow_status(self):
        # a pending request never references a room
        if self.status == RequestStatus.PENDING and (self.room_id or self.listener_id):
            raise ValueError("pending request cannot carry room_id or listener_id")
        if self.status == RequestStatus.ACCEPTED and not self.room_id:
            raise ValueError("accepted request must carry room_id")
        return self


class ChatRoom(BaseModel):
    room_id: str
    request_id: Optional[str] = None
    speaker_id: str
    listener_id: str
    created_at: datetime


class ChatMessage(BaseModel):
    id: int
    room_id: str
    sender_id: str
    sender_name: str
    content: str
    timestamp: datetime


class Report(BaseModel):
    id: int
    room_id: Optional[str] = None
    reporter_id: Optional[str] = None
    type: str = "Harassment"
    status: str = "pending"
    reported_at: datetime


class Ban(BaseModel):
    id: int
    client_id: str
    user_id: Optional[str] = None
    reason: Optional[str] = None
    expires_at: int
    created_at: datetime


class SuspensionStatus(BaseModel):
    suspended: bool
    expires_at: Optional[int] = None
    remaining_ms: int = 0
    remaining: Optional[str] = None


class JournalEntry(BaseModel):
    id: int
    user_id: str
    content: str
    timestamp: datetime


class Echo(BaseModel):
    id: int
    mood_id: str
    nickname: str
    content: str
    timestamp: datetime


class Mood(BaseModel):
    id: str
    name: str
    description: str
    count: int = 0


class CrisisEscalation(BaseModel):
    title: str
    message: str
    options: List[Dict[str, str]]


class PrivacyWarning(BaseModel):
    message: str
    display_seconds: int = 5


# ---------------------------------------------------------------------------
# API bodies
# ---------------------------------------------------------------------------
class _TextBody(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class RegisterBody(BaseModel):
    handle: str = Field(..., min_length=1, max_length=64)
    password: str
    display_name: Optional[str] = Field(None, max_length=64)


class LoginBody(BaseModel):
    handle: str
    password: str


class ProfileBody(_TextBody):
    display_name: str = Field(..., min_length=1, max_length=64)


class SpeakBody(_TextBody):
    text: str = Field(..., min_length=1, max_length=4000)


class MessageBody(_TextBody):
    content: str = Field(..., min_length=1, max_length=4000)


class JournalBody(_TextBody):
    content: str = Field(..., min_length=1, max_length=20000)


class CrisisChoiceBody(BaseModel):
    choice: str

    @field_validator("choice")
    @classmethod
    def choice_must_be_known(cls, v):
        if v not in ("specialist", "peer"):
            raise ValueError("choice must be 'specialist' or 'peer'")
        return v
