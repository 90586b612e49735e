# aether/prompts.py
import os

RESPONSE_LANGUAGE = os.getenv("RESPONSE_LANGUAGE", "English")

SPEAKER_PROMPT_TEMPLATE = """
You are Aether AI, a supportive listener on an anonymous peer-support platform. The user said: "{message}".
Respond in {language}. Be deeply empathetic and acknowledge their feelings.
Tell them you are finding a real person to listen to them. Keep it calm and very comforting.
IMPORTANT: Respond in 1 brief sentence. Do not repeat or quote their words.
"""

# shown to the speaker and used as the listener-facing summary when no rewrite is available
SPEAKER_FALLBACK = "Your words are safe with me. I am finding a real person who can truly hear you right now."

JOURNAL_PROMPT_TEMPLATE = """
The user wrote this in their private sanctuary: "{entry}".
Acknowledge their feelings with extreme empathy and rephrase it in a way that makes them feel heard, validated, and poetic.
Start with "AI Reflection:". Keep it meaningful and supportive.
"""

REFLECTION_PREFIX = "AI Reflection:"

_JOURNAL_FALLBACKS = (
    (("sad", "heavy", "pain"),
     "I can feel the depth of your words. Sharing them here is the first step towards peace."),
    (("happy", "joy", "great"),
     "Your positive energy is a beacon in the Aether. Keep shining."),
    (("scared", "anxious", "fear"),
     "Take a deep breath. You are in a safe haven where no one judges your frequencies."),
)
_JOURNAL_DEFAULT = "I hear you. This space is yours to reflect in absolute safety."


def speaker_prompt(message: str) -> str:
    return SPEAKER_PROMPT_TEMPLATE.format(message=message, language=RESPONSE_LANGUAGE).strip()


def journal_prompt(entry: str) -> str:
    return JOURNAL_PROMPT_TEMPLATE.format(entry=entry).strip()


def journal_fallback(entry: str) -> str:
    lowered = entry.lower()
    for keywords, text in _JOURNAL_FALLBACKS:
        if any(k in lowered for k in keywords):
            return f"{REFLECTION_PREFIX} {text}"
    return f"{REFLECTION_PREFIX} {_JOURNAL_DEFAULT}"
