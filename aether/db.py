# aether/db.py
import os
import datetime
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session
from sqlalchemy.exc import SQLAlchemyError

from aether import monitoring
from aether.errors import StoreUnavailableError

# Default dev DB; on Vercel api/index.py sets DATABASE_URL to /tmp before import
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./aether.db")

SessionFactory = Callable[[], Session]


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def _make_sessionmaker(bind):
    # records are converted to schemas after commit, so keep loaded attributes
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = _make_engine(DATABASE_URL)
SessionLocal = _make_sessionmaker(engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = _make_sessionmaker(engine)


def init_db():
    # Create tables if they don't exist
    try:
        import aether.models as models  # noqa: F401
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        # Surface in logs; don't crash the app at import time
        monitoring.logger.warning("DB init failed", extra={"error": str(e)})


def get_session() -> Session:
    """Open a session on whatever engine is currently configured."""
    return SessionLocal()


@contextmanager
def session_scope(factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """
    Transactional scope: commit on success, roll back on any failure.
    Driver/ORM failures are re-raised as StoreUnavailableError.
    """
    session = (factory or get_session)()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        monitoring.logger.exception("Store operation failed")
        raise StoreUnavailableError("The store is temporarily unavailable, please retry",
                                    {"exception": str(e)}) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def utcnow() -> datetime.datetime:
    """Server timestamp (naive UTC, as stored)."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def now_ms() -> int:
    """Wall clock in epoch milliseconds (suspension expiries)."""
    return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)
