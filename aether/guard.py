# aether/guard.py
"""
ContentGuard: synchronous, stateless classification of outbound text before any
store write.

Policies:
- privacy   phone-number shaped digit runs, email-shaped tokens, messenger links
- crisis    self-harm / suicide vocabulary (case-insensitive substring)
- toxicity  harassment / insult vocabulary (case-insensitive substring)

Policy sets fix the evaluation order; the first policy that matches decides the
verdict. Every policy in a set is a pure function of the text, so the order is
only a precedence rule:
- SPEAK_POLICIES: crisis before privacy (a crisis is never downgraded to a
  privacy warning)
- CHAT_POLICIES: toxicity before privacy
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from aether import monitoring
from aether.schemas import Verdict

CRISIS_TERMS: Tuple[str, ...] = (
    "suicide",
    "kill myself",
    "end it all",
    "hurt myself",
    "die",
    "self-harm",
)

TOXICITY_TERMS: Tuple[str, ...] = (
    "shut up",
    "idiot",
    "stupid",
    "hate",
    "die",
    "ugly",
    "useless",
    "harass",
    "kill",
)

PRIVACY_PATTERN = re.compile(
    r"(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}"  # phone
    r"|[\w.%+-]+@[\w.-]+\.[a-zA-Z]{2,}"                          # email
    r"|(?:wa\.me|t\.me|instagram\.|facebook\.)",                  # messenger links
    flags=re.I,
)

PRIVACY = "privacy"
CRISIS = "crisis"
TOXICITY = "toxicity"


def _first_term(text: str, terms: Sequence[str]) -> Optional[str]:
    lowered = text.lower()
    for term in terms:
        if term in lowered:
            return term
    return None


def match_privacy(text: str) -> Optional[str]:
    m = PRIVACY_PATTERN.search(text or "")
    return m.group(0) if m else None


def match_crisis(text: str) -> Optional[str]:
    return _first_term(text or "", CRISIS_TERMS)


def match_toxicity(text: str) -> Optional[str]:
    return _first_term(text or "", TOXICITY_TERMS)


_POLICIES: Dict[str, Tuple[Callable[[str], Optional[str]], Verdict]] = {
    PRIVACY: (match_privacy, Verdict.BLOCK_PRIVACY),
    CRISIS: (match_crisis, Verdict.BLOCK_CRISIS),
    TOXICITY: (match_toxicity, Verdict.BLOCK_TOXICITY),
}

SPEAK_POLICIES: Tuple[str, ...] = (CRISIS, PRIVACY)
CHAT_POLICIES: Tuple[str, ...] = (TOXICITY, PRIVACY)


@dataclass
class GuardReport:
    verdict: Verdict
    policy: Optional[str] = None
    # every policy that matched, in evaluation order
    triggered: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.verdict == Verdict.ALLOW


def inspect(text: str, policies: Sequence[str] = SPEAK_POLICIES) -> GuardReport:
    """Run every policy in the set and report the dominant verdict."""
    triggered = []
    for name in policies:
        matcher, _ = _POLICIES[name]
        if matcher(text) is not None:
            triggered.append(name)
    if not triggered:
        return GuardReport(verdict=Verdict.ALLOW)
    dominant = triggered[0]
    return GuardReport(verdict=_POLICIES[dominant][1], policy=dominant, triggered=triggered)


def evaluate(text: str, policies: Sequence[str] = SPEAK_POLICIES, surface: str = "speak") -> Verdict:
    """Classify `text`; never raises and never logs the text itself."""
    report = inspect(text, policies)
    monitoring.inc_guard_verdict(surface, report.verdict.value)
    if not report.allowed:
        monitoring.logger.info(
            "Content blocked",
            extra={"surface": surface, "verdict": report.verdict.value, "triggered": report.triggered},
        )
    return report.verdict


def evaluate_speak(text: str) -> Verdict:
    return evaluate(text, SPEAK_POLICIES, surface="speak")


def evaluate_chat(text: str, surface: str = "chat") -> Verdict:
    return evaluate(text, CHAT_POLICIES, surface=surface)
