# aether/auth.py
"""
Identity provider, admin keys and pluggable rate-limiter.

Identities are credential-keyed accounts: the handle is sanitized to letters and
digits and suffixed with a synthetic domain (`<handle>@aether.local`). The key is
never a deliverable address, only a unique login name.

Env vars:
- CREDENTIAL_DOMAIN (default: aether.local)
- ADMIN_API_KEYS: comma-separated administrator keys
- ADMIN_API_KEYS_FILE: optional path to file with one key per line
- RATE_LIMIT_ENABLED (default: true)
- RATE_LIMIT_PER_MINUTE (default: 60)
- REDIS_URL: optional, enables Redis-based distributed limiter
"""

import hashlib
import hmac
import os
import re
import secrets
import threading
import time
import uuid
from typing import Optional, Tuple, Dict, Set

from sqlalchemy import select, delete

from aether import db as dbmod
from aether import monitoring
from aether.db import SessionFactory, session_scope
from aether.errors import AuthError
from aether.models import SessionToken, UserAccount
from aether.schemas import Identity

# Optional Redis import
try:
    import redis as _redis_mod
except ImportError:
    _redis_mod = None

# Configuration
CREDENTIAL_DOMAIN = os.getenv("CREDENTIAL_DOMAIN", "aether.local")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
ADMIN_API_KEYS_ENV = os.getenv("ADMIN_API_KEYS", "")
ADMIN_API_KEYS_FILE = os.getenv("ADMIN_API_KEYS_FILE", "")
REDIS_URL = os.getenv("REDIS_URL", "")

MIN_PASSWORD_LENGTH = 6
_PBKDF2_ROUNDS = 200_000


def _load_admin_keys() -> Set[str]:
    keys: Set[str] = set()
    if ADMIN_API_KEYS_ENV:
        for k in ADMIN_API_KEYS_ENV.split(","):
            k = k.strip()
            if k:
                keys.add(k)
    if ADMIN_API_KEYS_FILE and os.path.exists(ADMIN_API_KEYS_FILE):
        try:
            with open(ADMIN_API_KEYS_FILE, "r", encoding="utf-8") as f:
                for line in f:
                    k = line.strip()
                    if k:
                        keys.add(k)
        except OSError as e:
            monitoring.logger.warning("Could not read admin keys file", extra={"error": str(e)})
    return keys


ADMIN_API_KEYS = _load_admin_keys()


def is_admin_key_allowed(api_key: Optional[str]) -> bool:
    if not api_key or not ADMIN_API_KEYS:
        return False
    return any(hmac.compare_digest(api_key, k) for k in ADMIN_API_KEYS)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------
def sanitize_handle(handle: str) -> str:
    """Drop whitespace and every non-alphanumeric character."""
    return re.sub(r"[^a-zA-Z0-9]", "", re.sub(r"\s+", "", handle or ""))


def credential_key(handle: str) -> str:
    clean = sanitize_handle(handle)
    if not clean:
        raise AuthError("Handle must contain letters or digits (auth/invalid-handle).")
    return f"{clean.lower()}@{CREDENTIAL_DOMAIN}"


def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), _PBKDF2_ROUNDS)
    return f"pbkdf2_sha256${_PBKDF2_ROUNDS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        _, rounds, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(rounds))
    return hmac.compare_digest(digest.hex(), expected)


class AuthProvider:
    """Credential accounts plus opaque bearer session tokens."""

    def __init__(self, session_factory: SessionFactory = dbmod.get_session):
        self._session_factory = session_factory

    def _issue_token(self, s, uid: str) -> str:
        token = secrets.token_urlsafe(32)
        s.add(SessionToken(token=token, uid=uid, created_at=dbmod.utcnow()))
        return token

    def create_with_credential(self, handle: str, password: str,
                               display_name: Optional[str] = None) -> Tuple[Identity, str]:
        key = credential_key(handle)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters (auth/weak-password).")
        uid = uuid.uuid4().hex
        name = (display_name or "").strip() or handle.strip()
        with session_scope(self._session_factory) as s:
            taken = s.execute(select(UserAccount.id).where(UserAccount.credential_key == key)).first()
            if taken is not None:
                raise AuthError("Handle already in use (auth/handle-already-in-use).")
            s.add(UserAccount(uid=uid, credential_key=key, password_hash=hash_password(password),
                              display_name=name, created_at=dbmod.utcnow()))
            token = self._issue_token(s, uid)
        monitoring.logger.info("Account created", extra={"uid": uid})
        return Identity(uid=uid, display_name=name), token

    def sign_in_with_credential(self, handle: str, password: str) -> Tuple[Identity, str]:
        key = credential_key(handle)
        with session_scope(self._session_factory) as s:
            account = s.execute(select(UserAccount).where(UserAccount.credential_key == key)).scalar_one_or_none()
            if account is None or not verify_password(password or "", account.password_hash):
                raise AuthError("Invalid handle or password (auth/invalid-credential).")
            token = self._issue_token(s, account.uid)
            identity = Identity(uid=account.uid, display_name=account.display_name)
        return identity, token

    def sign_out(self, token: str):
        with session_scope(self._session_factory) as s:
            s.execute(delete(SessionToken).where(SessionToken.token == token))

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        with session_scope(self._session_factory) as s:
            row = s.execute(
                select(UserAccount)
                .join(SessionToken, SessionToken.uid == UserAccount.uid)
                .where(SessionToken.token == token)
            ).scalar_one_or_none()
            return Identity(uid=row.uid, display_name=row.display_name) if row else None

    def update_display_name(self, uid: str, display_name: str) -> Identity:
        with session_scope(self._session_factory) as s:
            account = s.execute(select(UserAccount).where(UserAccount.uid == uid)).scalar_one_or_none()
            if account is None:
                raise AuthError("Account not found (auth/user-not-found).")
            account.display_name = display_name
            return Identity(uid=account.uid, display_name=account.display_name)


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
class InMemoryFixedWindowLimiter:
    """Thread-safe in-memory fixed-window rate limiter (per-process)."""

    def __init__(self, limit_per_minute: int = 60):
        self.limit = limit_per_minute
        self._store: Dict[str, Tuple[int, int]] = {}  # key -> (window_minute, count)
        self._lock = threading.Lock()

    def allow_request(self, key: str) -> Tuple[bool, Optional[int]]:
        now = int(time.time())
        window = now // 60
        with self._lock:
            if key not in self._store:
                self._store[key] = (window, 1)
                return True, self.limit - 1
            wstart, count = self._store[key]
            if wstart == window:
                if count >= self.limit:
                    return False, 0
                self._store[key] = (wstart, count + 1)
                return True, self.limit - (count + 1)
            else:
                self._store[key] = (window, 1)
                return True, self.limit - 1

    def reset(self):
        """Reset all state (useful for tests)."""
        with self._lock:
            self._store.clear()


class RedisFixedWindowLimiter:
    """Redis fixed-window counter using INCR + EXPIRE."""

    def __init__(self, redis_url: str, limit_per_minute: int = 60):
        if _redis_mod is None:
            raise RuntimeError("redis package not installed")
        self.limit = limit_per_minute
        self._client = _redis_mod.from_url(redis_url, decode_responses=True)

    def allow_request(self, key: str) -> Tuple[bool, Optional[int]]:
        now = int(time.time())
        window = now // 60
        rkey = f"rate:{key}:{window}"
        try:
            count = self._client.incr(rkey)
            if count == 1:
                self._client.expire(rkey, 120)
            if int(count) > self.limit:
                return False, 0
            return True, self.limit - int(count)
        except Exception:
            # Fail open on Redis errors
            return True, None


# Choose limiter instance
_rate_limiter: InMemoryFixedWindowLimiter
if REDIS_URL and _redis_mod is not None:
    try:
        _rate_limiter = RedisFixedWindowLimiter(REDIS_URL, RATE_LIMIT_PER_MINUTE)
    except Exception:
        _rate_limiter = InMemoryFixedWindowLimiter(RATE_LIMIT_PER_MINUTE)
else:
    _rate_limiter = InMemoryFixedWindowLimiter(RATE_LIMIT_PER_MINUTE)


def check_rate_limit(key: str) -> Tuple[bool, Optional[int]]:
    """Check and consume quota. Returns (allowed, remaining)."""
    if not RATE_LIMIT_ENABLED:
        return True, None
    return _rate_limiter.allow_request(key or "anonymous")


def get_limiter() -> InMemoryFixedWindowLimiter:
    """Return the current limiter instance (for testing)."""
    return _rate_limiter
