# aether/orchestrator.py
"""
SupportOrchestrator: the user-facing flows, each one guard-first.

speak:        guard (crisis > privacy) -> best-effort acknowledgment -> ledger.submit
send_message: guard (toxicity > privacy) -> suspend on toxicity | chat.post
post_echo:    same gate as send_message, onto a mood board
accept:       MatchCoordinator.accept (compare-and-swap)
write_journal: raw append + reflection

Flows return response dicts in the API envelope. Policy blocks come back as
`status: "blocked"` responses, never as exceptions; store failures propagate as
AetherError subclasses for the API layer to map. Async flows run their store
calls in worker threads so the event loop never waits on the database.
"""

import asyncio
from typing import Any, Dict, Optional

from aether import db as dbmod
from aether import guard
from aether import llm_wrapper
from aether import monitoring
from aether import prompts
from aether.admin import AdminConsole
from aether.auth import AuthProvider
from aether.chat import ChatSession
from aether.db import SessionFactory
from aether.echoes import EchoBoard
from aether.feed import ChangeFeed
from aether.journal import JournalService
from aether.ledger import RequestLedger
from aether.matching import MatchCoordinator
from aether.moderation import DbSuspensionStore, ModerationActions, SuspensionStore
from aether.schemas import Identity, Verdict


class SupportOrchestrator:
    def __init__(self, feed: Optional[ChangeFeed] = None,
                 session_factory: SessionFactory = dbmod.get_session,
                 suspensions: Optional[SuspensionStore] = None):
        self.feed = feed or ChangeFeed()
        self.auth = AuthProvider(session_factory)
        self.ledger = RequestLedger(self.feed, session_factory)
        self.chats = ChatSession(self.feed, session_factory)
        self.matcher = MatchCoordinator(self.ledger, self.chats, self.feed, session_factory)
        self.moderation = ModerationActions(suspensions or DbSuspensionStore(session_factory), session_factory)
        self.journal = JournalService(self.feed, session_factory)
        self.echoes = EchoBoard(self.feed, session_factory)
        self.admin = AdminConsole(self.ledger, self.chats, self.feed, session_factory)

    # ------------------------------------------------------------------
    # Guard responses
    # ------------------------------------------------------------------
    def _blocked(self, verdict: Verdict, client_id: str, user: Identity) -> Dict[str, Any]:
        resp: Dict[str, Any] = {"status": "blocked", "verdict": verdict.value}
        if verdict == Verdict.BLOCK_CRISIS:
            resp["escalation"] = self.moderation.escalate_crisis().model_dump()
        elif verdict == Verdict.BLOCK_PRIVACY:
            resp["warning"] = self.moderation.privacy_warning().model_dump()
        elif verdict == Verdict.BLOCK_TOXICITY:
            status = self.moderation.impose_suspension(client_id, user_id=user.uid)
            resp["suspension"] = status.model_dump()
        return resp

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------
    async def speak(self, user: Identity, client_id: str, text: str) -> Dict[str, Any]:
        """
        Full speak flow:
        1. Crisis + privacy checks (crisis dominates); blocked text is never stored
        2. Empathetic acknowledgment (bounded, falls back to canned text)
        3. Pending request on the ledger, summarised by the acknowledgment
        """
        verdict = guard.evaluate_speak(text)
        if verdict != Verdict.ALLOW:
            return await asyncio.to_thread(self._blocked, verdict, client_id, user)

        reply = await llm_wrapper.rewrite_best_effort(prompts.speaker_prompt(text))
        summary = reply or prompts.SPEAKER_FALLBACK
        request_id = await asyncio.to_thread(self.ledger.submit, user.uid, user.display_name, summary)
        return {
            "status": "success",
            "request_id": request_id,
            "reply": summary,
            "ai_generated": reply is not None,
            "matching": True,
        }

    def send_message(self, user: Identity, client_id: str, room_id: str, content: str) -> Dict[str, Any]:
        self.chats.require_participant(room_id, user.uid)
        verdict = guard.evaluate_chat(content)
        if verdict != Verdict.ALLOW:
            return self._blocked(verdict, client_id, user)
        message = self.chats.post(room_id, user.uid, user.display_name, content)
        return {"status": "success", "message": message.model_dump(mode="json")}

    def post_echo(self, user: Identity, client_id: str, mood_id: str, content: str) -> Dict[str, Any]:
        verdict = guard.evaluate_chat(content, surface="echo")
        if verdict != Verdict.ALLOW:
            return self._blocked(verdict, client_id, user)
        echo = self.echoes.post(mood_id, user.uid, user.display_name, content)
        return {"status": "success", "echo": echo.model_dump(mode="json")}

    def accept(self, user: Identity, request_id: str) -> Dict[str, Any]:
        room_id = self.matcher.accept(request_id, user.uid)
        return {"status": "success", "request_id": request_id, "room_id": room_id}

    def report(self, user: Identity, room_id: str) -> Dict[str, Any]:
        self.chats.require_participant(room_id, user.uid)
        report = self.moderation.report_participant(room_id, reporter_id=user.uid)
        return {"status": "success", "report": report.model_dump(mode="json")}

    async def write_journal(self, user: Identity, content: str) -> Dict[str, Any]:
        entry = await asyncio.to_thread(self.journal.add, user.uid, content)
        reflection = await self.journal.reflect(content)
        monitoring.logger.info("Journal entry stored", extra={"uid": user.uid, "entry_id": entry.id})
        return {"status": "success", "entry": entry.model_dump(mode="json"), "reflection": reflection}
