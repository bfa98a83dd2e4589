# smart_insights/db.py
"""
App-owned storage: response log records and saved source/LLM configurations.

This is the service's own database, not a data source users ask questions about.
"""

import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base, Session

# Default dev DB
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./smart_insights.db")


def _make_engine(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def reconfigure(url: str):
    """Reconfigure the DB engine and session factory at runtime (for tests)."""
    global engine, SessionLocal
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session() -> Session:
    # Looked up at call time so reconfigure() is picked up by long-lived stores
    return SessionLocal()


def init_db():
    """Create tables if they don't exist."""
    import smart_insights.models as models  # noqa: F401
    Base.metadata.create_all(bind=engine)
