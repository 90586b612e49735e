# tests/conftest.py
import os
import tempfile

# Must be set before aether modules read their env at import time
os.environ.setdefault("MOCK_LLM", "true")
os.environ.setdefault("LOG_AS_JSON", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(tempfile.gettempdir(), "aether_test_import.db"))

import pytest

from aether import db as dbmod
from aether import auth as authmod
from aether.auth import InMemoryFixedWindowLimiter


@pytest.fixture
def fresh_db(tmp_path):
    """Point the store at a disposable SQLite file for one test."""
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'aether.db'}")
    dbmod.init_db()
    yield
    dbmod.engine.dispose()


@pytest.fixture
def roomy_limiter(monkeypatch):
    monkeypatch.setattr(authmod, "_rate_limiter", InMemoryFixedWindowLimiter(limit_per_minute=1000))
