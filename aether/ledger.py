# aether/ledger.py
"""
RequestLedger: the durable collection of help requests.

Records are appended as `pending`; the only transition out of `pending` is
performed by MatchCoordinator (aether/matching.py) with a conditional update.
Listing order is newest-first by server creation time.
"""

import uuid
from typing import List, Optional

from sqlalchemy import select, func, delete

from aether import db as dbmod
from aether import monitoring
from aether.db import SessionFactory, session_scope
from aether.feed import ChangeFeed, Callback, Subscription
from aether.models import HelpRequestRecord
from aether.schemas import HelpRequest, RequestStatus

REQUESTS_TOPIC = "requests"
DEFAULT_SPEAKER_NAME = "Anonymous"


def to_help_request(rec: HelpRequestRecord) -> HelpRequest:
    return HelpRequest(
        id=rec.request_id,
        speaker_id=rec.speaker_id,
        speaker_name=rec.speaker_name,
        summary=rec.summary,
        status=RequestStatus(rec.status),
        room_id=rec.room_id,
        listener_id=rec.listener_id,
        created_at=rec.created_at,
        accepted_at=rec.accepted_at,
    )


class RequestLedger:
    def __init__(self, feed: ChangeFeed, session_factory: SessionFactory = dbmod.get_session):
        self.feed = feed
        self._session_factory = session_factory

    def _make_request_id(self) -> str:
        return str(uuid.uuid4())

    def submit(self, speaker_id: str, speaker_name: Optional[str], summary: str) -> str:
        """Append a new pending request; no de-duplication per speaker."""
        request_id = self._make_request_id()
        with session_scope(self._session_factory) as s:
            s.add(HelpRequestRecord(
                request_id=request_id,
                speaker_id=speaker_id,
                speaker_name=speaker_name or DEFAULT_SPEAKER_NAME,
                summary=summary,
                status=RequestStatus.PENDING.value,
                created_at=dbmod.utcnow(),
            ))
        monitoring.inc_help_request()
        monitoring.logger.info("Help request submitted", extra={"request_id": request_id, "speaker_id": speaker_id})
        self.feed.publish(REQUESTS_TOPIC)
        return request_id

    def get(self, request_id: str) -> Optional[HelpRequest]:
        with session_scope(self._session_factory) as s:
            rec = s.execute(
                select(HelpRequestRecord).where(HelpRequestRecord.request_id == request_id)
            ).scalar_one_or_none()
            return to_help_request(rec) if rec else None

    def _query(self, *criteria) -> List[HelpRequest]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(
                select(HelpRequestRecord)
                .where(*criteria)
                .order_by(HelpRequestRecord.created_at.desc(), HelpRequestRecord.id.desc())
            ).scalars().all()
            return [to_help_request(r) for r in rows]

    def list_pending(self) -> List[HelpRequest]:
        return self._query(HelpRequestRecord.status == RequestStatus.PENDING.value)

    def list_accepted_for(self, speaker_id: str) -> List[HelpRequest]:
        return self._query(
            HelpRequestRecord.status == RequestStatus.ACCEPTED.value,
            HelpRequestRecord.speaker_id == speaker_id,
        )

    def list_all(self) -> List[HelpRequest]:
        return self._query()

    def count_pending(self) -> int:
        with session_scope(self._session_factory) as s:
            return s.execute(
                select(func.count(HelpRequestRecord.id))
                .where(HelpRequestRecord.status == RequestStatus.PENDING.value)
            ).scalar_one()

    def watch_pending(self, callback: Optional[Callback] = None) -> Subscription:
        return self.feed.subscribe(REQUESTS_TOPIC, self.list_pending, callback)

    def watch_own_accepted(self, speaker_id: str, callback: Optional[Callback] = None) -> Subscription:
        return self.feed.subscribe(REQUESTS_TOPIC, lambda: self.list_accepted_for(speaker_id), callback)

    def delete(self, request_id: str) -> bool:
        """Administrative removal."""
        with session_scope(self._session_factory) as s:
            result = s.execute(delete(HelpRequestRecord).where(HelpRequestRecord.request_id == request_id))
            removed = result.rowcount > 0
        if removed:
            self.feed.publish(REQUESTS_TOPIC)
        return removed
