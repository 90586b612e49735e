# aether/matching.py
"""
MatchCoordinator: the single place a request moves from `pending` to `accepted`.

Acceptance is a compare-and-swap on the request's status:

    UPDATE requests SET status='accepted', room_id=..., listener_id=...
    WHERE request_id=:id AND status='pending'

The room record and its connection notice are written in the same transaction,
so a losing acceptor leaves nothing behind and the request can only ever point
at one room. The record is updated in place, keeping its identity.
"""

import time
import uuid
from typing import Union

from sqlalchemy import update

from aether import db as dbmod
from aether import monitoring
from aether.chat import ChatSession, room_topic
from aether.db import SessionFactory, session_scope
from aether.errors import AlreadyMatchedError, ForbiddenError, NotFoundError
from aether.feed import ChangeFeed
from aether.ledger import REQUESTS_TOPIC, RequestLedger
from aether.models import HelpRequestRecord
from aether.schemas import HelpRequest, RequestStatus


def make_room_id(speaker_id: str, listener_id: str) -> str:
    return f"{speaker_id}_{listener_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class MatchCoordinator:
    def __init__(self, ledger: RequestLedger, chats: ChatSession, feed: ChangeFeed,
                 session_factory: SessionFactory = dbmod.get_session):
        self.ledger = ledger
        self.chats = chats
        self.feed = feed
        self._session_factory = session_factory

    def accept(self, request: Union[HelpRequest, str], listener_id: str) -> str:
        """
        Pair `listener_id` with a pending request and return the new room id.
        Raises AlreadyMatchedError when another acceptance committed first.
        """
        request_id = request.id if isinstance(request, HelpRequest) else request
        current = self.ledger.get(request_id)
        if current is None:
            raise NotFoundError("Request not found", {"request_id": request_id})
        if current.status != RequestStatus.PENDING:
            monitoring.inc_match("already_matched")
            raise AlreadyMatchedError(request_id)
        if current.speaker_id == listener_id:
            raise ForbiddenError("Cannot accept your own request", {"request_id": request_id})

        room_id = make_room_id(current.speaker_id, listener_id)
        with session_scope(self._session_factory) as s:
            result = s.execute(
                update(HelpRequestRecord)
                .where(
                    HelpRequestRecord.request_id == request_id,
                    HelpRequestRecord.status == RequestStatus.PENDING.value,
                )
                .values(
                    status=RequestStatus.ACCEPTED.value,
                    room_id=room_id,
                    listener_id=listener_id,
                    accepted_at=dbmod.utcnow(),
                )
            )
            if result.rowcount != 1:
                monitoring.inc_match("already_matched")
                raise AlreadyMatchedError(request_id)
            self.chats.open_room(s, room_id, current.speaker_id, listener_id, request_id=request_id)

        monitoring.inc_match("accepted")
        monitoring.logger.info("Request accepted", extra={"request_id": request_id, "room_id": room_id})
        self.feed.publish(REQUESTS_TOPIC)
        self.feed.publish(room_topic(room_id))
        return room_id
