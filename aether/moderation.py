# aether/moderation.py
"""
Moderation side effects triggered by content-guard verdicts or by participants.

Suspensions are keyed to a client installation id and stored as an absolute
expiry in epoch milliseconds. They lift themselves: a status read after the
expiry clears the entry. The client id is supplied by the caller, so a client
that changes its id escapes the suspension; this is friction, not a security
control.
"""

import math
import os
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, delete

from aether import db as dbmod
from aether import monitoring
from aether.db import SessionFactory, session_scope
from aether.models import BanRecord, ReportRecord
from aether.schemas import CrisisEscalation, PrivacyWarning, Report, SuspensionStatus

HOUR_MS = 60 * 60 * 1000
SUSPENSION_HOURS = int(os.getenv("SUSPENSION_HOURS", "24"))
SUSPENSION_DURATION_MS = SUSPENSION_HOURS * HOUR_MS

PRIVACY_WARNING_TEXT = "Privacy Shield: Sharing contacts or external links is forbidden for your safety."
PRIVACY_WARNING_SECONDS = 5

CRISIS_SPECIALIST = "specialist"
CRISIS_PEER = "peer"
_CRISIS_NEXT_STEP = {
    CRISIS_SPECIALIST: "specialist_queue",
    CRISIS_PEER: "peer_support",
}


def format_remaining(remaining_ms: int) -> str:
    """'<days>d <hours>h', hours rounded up so a live suspension never reads 0d 0h."""
    total_hours = max(0, math.ceil(remaining_ms / HOUR_MS))
    days, hours = divmod(total_hours, 24)
    return f"{days}d {hours}h"


class SuspensionStore(ABC):
    """Persisted expiry per client id."""

    @abstractmethod
    def get(self, client_id: str) -> Optional[int]:
        ...

    @abstractmethod
    def set(self, client_id: str, expires_at: int, user_id: Optional[str] = None, reason: Optional[str] = None):
        ...

    @abstractmethod
    def clear(self, client_id: str):
        ...


class InMemorySuspensionStore(SuspensionStore):
    def __init__(self):
        self._expiries: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, client_id: str) -> Optional[int]:
        with self._lock:
            return self._expiries.get(client_id)

    def set(self, client_id: str, expires_at: int, user_id: Optional[str] = None, reason: Optional[str] = None):
        with self._lock:
            self._expiries[client_id] = int(expires_at)

    def clear(self, client_id: str):
        with self._lock:
            self._expiries.pop(client_id, None)


class DbSuspensionStore(SuspensionStore):
    """Backed by the `bans` table, one row per client id."""

    def __init__(self, session_factory: SessionFactory = dbmod.get_session):
        self._session_factory = session_factory

    def get(self, client_id: str) -> Optional[int]:
        with session_scope(self._session_factory) as s:
            rec = s.execute(select(BanRecord).where(BanRecord.client_id == client_id)).scalar_one_or_none()
            return int(rec.expires_at) if rec else None

    def set(self, client_id: str, expires_at: int, user_id: Optional[str] = None, reason: Optional[str] = None):
        with session_scope(self._session_factory) as s:
            rec = s.execute(select(BanRecord).where(BanRecord.client_id == client_id)).scalar_one_or_none()
            if rec is None:
                s.add(BanRecord(client_id=client_id, user_id=user_id, reason=reason,
                                expires_at=int(expires_at), created_at=dbmod.utcnow()))
            else:
                rec.expires_at = int(expires_at)
                rec.user_id = user_id or rec.user_id
                rec.reason = reason or rec.reason

    def clear(self, client_id: str):
        with session_scope(self._session_factory) as s:
            s.execute(delete(BanRecord).where(BanRecord.client_id == client_id))


def to_report(rec: ReportRecord) -> Report:
    return Report(
        id=rec.id,
        room_id=rec.room_id,
        reporter_id=rec.reporter_id,
        type=rec.type,
        status=rec.status,
        reported_at=rec.reported_at,
    )


class ModerationActions:
    def __init__(self, suspensions: SuspensionStore, session_factory: SessionFactory = dbmod.get_session,
                 clock: Callable[[], int] = dbmod.now_ms):
        self.suspensions = suspensions
        self._session_factory = session_factory
        self._clock = clock

    # --- reports ------------------------------------------------------------
    def report_participant(self, room_id: str, reporter_id: Optional[str] = None) -> Report:
        """File a harassment report; does not end the session."""
        with session_scope(self._session_factory) as s:
            rec = ReportRecord(room_id=room_id, reporter_id=reporter_id, type="Harassment",
                               status="pending", reported_at=dbmod.utcnow())
            s.add(rec)
            s.flush()
            report = to_report(rec)
        monitoring.inc_report()
        monitoring.logger.info("Participant reported", extra={"room_id": room_id, "report_id": report.id})
        return report

    def list_reports(self) -> List[Report]:
        with session_scope(self._session_factory) as s:
            rows = s.execute(select(ReportRecord).order_by(ReportRecord.reported_at.desc())).scalars().all()
            return [to_report(r) for r in rows]

    # --- suspensions --------------------------------------------------------
    def impose_suspension(self, client_id: str, duration_ms: int = SUSPENSION_DURATION_MS,
                          user_id: Optional[str] = None, reason: str = "toxicity") -> SuspensionStatus:
        expires_at = self._clock() + int(duration_ms)
        self.suspensions.set(client_id, expires_at, user_id=user_id, reason=reason)
        monitoring.inc_suspension(reason)
        monitoring.logger.warning("Client suspended", extra={"client_id": client_id, "expires_at": expires_at})
        return self.suspension_status(client_id)

    def suspension_status(self, client_id: str) -> SuspensionStatus:
        expires_at = self.suspensions.get(client_id)
        if expires_at is None:
            return SuspensionStatus(suspended=False)
        remaining = expires_at - self._clock()
        if remaining <= 0:
            self.suspensions.clear(client_id)
            return SuspensionStatus(suspended=False)
        return SuspensionStatus(
            suspended=True,
            expires_at=expires_at,
            remaining_ms=remaining,
            remaining=format_remaining(remaining),
        )

    def first_suspension(self, client_ids: List[str]) -> Optional[SuspensionStatus]:
        for client_id in client_ids:
            status = self.suspension_status(client_id)
            if status.suspended:
                return status
        return None

    # --- guard responses (no persistence) ------------------------------------
    def privacy_warning(self) -> PrivacyWarning:
        return PrivacyWarning(message=PRIVACY_WARNING_TEXT, display_seconds=PRIVACY_WARNING_SECONDS)

    def escalate_crisis(self) -> CrisisEscalation:
        return CrisisEscalation(
            title="We hear your pain.",
            message=(
                "You don't have to carry this alone. We've detected high distress levels. "
                "Would you like to connect with a certified specialist immediately?"
            ),
            options=[
                {"id": CRISIS_SPECIALIST, "label": "Connect with Specialist (24/7)"},
                {"id": CRISIS_PEER, "label": "Continue with a peer"},
            ],
        )

    def resolve_crisis_choice(self, choice: str) -> str:
        return _CRISIS_NEXT_STEP[choice]
