# aether/llm_wrapper.py
"""
Centralized text-generation wrapper. Supports OpenAI, Anthropic and Gemini backends.
call_llm returns a standardized dict:
{
  "text": "<assistant text>",
  "model": "<model used>",
  "response_id": "<model response id if available>",
  "raw": <raw response object>
}

rewrite_best_effort is the only entry point the support flows use: it races the
call against a hard timeout and resolves to None on timeout or any failure, so a
caller always falls back to canned text instead of stalling. A result arriving
after the timeout is discarded.

Configuration (env vars):
  LLM_PROVIDER=openai|anthropic|gemini   (default: auto-detect based on available keys)
  OPENAI_API_KEY=...
  ANTHROPIC_API_KEY=...
  GEMINI_API_KEY=...
  REWRITE_LLM_MODEL=...                  (default: depends on provider)
  REWRITE_TIMEOUT_SECONDS=5
  MOCK_LLM=true                          (mock mode for dev/tests)

Usage:
  from aether import llm_wrapper
  text = await llm_wrapper.rewrite_best_effort(prompt)   # str or None
"""

import asyncio
import os
import time
from typing import Dict, Any, Optional, List

import requests

from aether import monitoring

MOCK_LLM = os.getenv("MOCK_LLM", "true").lower() in ("1", "true", "yes")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "").strip()
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
REWRITE_TIMEOUT_SECONDS = float(os.getenv("REWRITE_TIMEOUT_SECONDS", "5"))

# Auto-detect provider: explicit > anthropic > gemini > openai
_explicit_provider = os.getenv("LLM_PROVIDER", "").strip().lower()
if _explicit_provider in ("anthropic", "claude"):
    LLM_PROVIDER = "anthropic"
elif _explicit_provider in ("gemini", "google"):
    LLM_PROVIDER = "gemini"
elif _explicit_provider in ("openai", "gpt"):
    LLM_PROVIDER = "openai"
elif ANTHROPIC_API_KEY:
    LLM_PROVIDER = "anthropic"
elif GEMINI_API_KEY:
    LLM_PROVIDER = "gemini"
elif OPENAI_API_KEY:
    LLM_PROVIDER = "openai"
else:
    LLM_PROVIDER = "openai"  # fallback, will use mock anyway

# Default models per provider
_PROVIDER_DEFAULTS = {
    "anthropic": "claude-sonnet-4-20250514",
    "gemini": "gemini-1.5-flash",
    "openai": "gpt-4o-mini",
}

DEFAULT_MODEL = os.getenv("REWRITE_LLM_MODEL", _PROVIDER_DEFAULTS[LLM_PROVIDER])

MOCK_REPLY = "I hear you, and I am here with you while I find someone who can truly listen."


# ---------------------------------------------------------------------------
# Anthropic backend
# ---------------------------------------------------------------------------
def _real_anthropic_chat(messages: List[Dict[str, str]], model: str,
                         max_tokens: int = 512, temperature: float = 0.7,
                         timeout: float = 30) -> Dict[str, Any]:
    from anthropic import Anthropic

    client = Anthropic(api_key=ANTHROPIC_API_KEY, timeout=timeout)

    # Anthropic uses a separate system param, not a system message in messages list
    system_text = ""
    chat_messages = []
    for m in messages:
        if m["role"] == "system":
            system_text += m["content"] + "\n"
        else:
            chat_messages.append({"role": m["role"], "content": m["content"]})

    kwargs = {
        "model": model,
        "max_tokens": max_tokens,
        "temperature": temperature,
        "messages": chat_messages,
    }
    if system_text.strip():
        kwargs["system"] = system_text.strip()

    resp = client.messages.create(**kwargs)

    text = ""
    for block in resp.content:
        if hasattr(block, "text"):
            text += block.text

    rid = getattr(resp, "id", None)
    return {"text": text, "model": model, "response_id": rid, "raw": resp}


# ---------------------------------------------------------------------------
# OpenAI backend
# ---------------------------------------------------------------------------
def _real_openai_chat_completion(messages: List[Dict[str, str]], model: str,
                                 max_tokens: int = 512, temperature: float = 0.7,
                                 timeout: float = 15) -> Dict[str, Any]:
    from openai import OpenAI
    client = OpenAI(api_key=OPENAI_API_KEY, timeout=timeout)
    resp = client.chat.completions.create(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature
    )
    choices = getattr(resp, "choices", [])
    text = choices[0].message.content if choices else ""
    rid = getattr(resp, "id", None)
    return {"text": text, "model": model, "response_id": rid, "raw": resp}


# ---------------------------------------------------------------------------
# Gemini backend (Generative Language REST API)
# ---------------------------------------------------------------------------
def _gemini_url(model: str) -> str:
    return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={GEMINI_API_KEY}"


def _real_gemini_generate(messages: List[Dict[str, str]], model: str,
                          max_tokens: int = 512, temperature: float = 0.7,
                          timeout: float = 15) -> Dict[str, Any]:
    prompt = "\n\n".join(m["content"] for m in messages)
    body = {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
    }
    resp = requests.post(_gemini_url(model), json=body, timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    text = (
        data.get("candidates", [{}])[0]
        .get("content", {})
        .get("parts", [{}])[0]
        .get("text", "")
    )
    return {"text": text, "model": model, "response_id": data.get("responseId"), "raw": data}


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------
def _mock_llm(messages: List[Dict[str, str]], model: str, **kwargs) -> Dict[str, Any]:
    """
    Deterministic mock used in dev/tests. Never echoes the user's words back,
    since rewritten text is shown to other users.
    """
    rid = f"mock-{model}-{int(time.time() * 1000)}"
    return {"text": MOCK_REPLY, "model": model, "response_id": rid, "raw": {"mock": True}}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def call_llm(messages: List[Dict[str, str]], model: Optional[str] = None,
             max_tokens: int = 512, temperature: float = 0.7,
             timeout: float = 30) -> Dict[str, Any]:
    """
    messages: list of {role, content}
    model: override model string
    Returns: dict with keys 'text','model','response_id','raw'
    """
    model = model or DEFAULT_MODEL
    if MOCK_LLM:
        return _mock_llm(messages, model=model, max_tokens=max_tokens,
                         temperature=temperature, timeout=timeout)
    try:
        if LLM_PROVIDER == "anthropic":
            return _real_anthropic_chat(messages, model=model, max_tokens=max_tokens,
                                        temperature=temperature, timeout=timeout)
        elif LLM_PROVIDER == "gemini":
            return _real_gemini_generate(messages, model=model, max_tokens=max_tokens,
                                         temperature=temperature, timeout=timeout)
        else:
            return _real_openai_chat_completion(messages, model=model, max_tokens=max_tokens,
                                                temperature=temperature, timeout=timeout)
    except Exception as e:
        raise RuntimeError(f"LLM call failed ({LLM_PROVIDER}): {e}")


async def rewrite_best_effort(prompt: str, timeout: Optional[float] = None,
                              model: Optional[str] = None) -> Optional[str]:
    """Return generated text, or None when unavailable within `timeout` seconds."""
    timeout = REWRITE_TIMEOUT_SECONDS if timeout is None else timeout
    start = time.time()
    messages = [{"role": "user", "content": prompt}]
    try:
        resp = await asyncio.wait_for(
            asyncio.to_thread(call_llm, messages, model=model, max_tokens=256, timeout=timeout),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        monitoring.observe_rewrite(start, "timeout")
        monitoring.logger.warning("Text rewrite timed out", extra={"timeout_s": timeout})
        return None
    except Exception as e:
        monitoring.observe_rewrite(start, "error")
        monitoring.logger.warning("Text rewrite failed", extra={"error": str(e)})
        return None

    text = (resp.get("text") or "").strip()
    if not text:
        monitoring.observe_rewrite(start, "empty")
        return None
    monitoring.observe_rewrite(start, "success")
    return text
