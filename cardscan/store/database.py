"""SQLAlchemy table and engine helpers backing the local key-value store.

Each collection (contacts, events, categories, auth records) lives in one
row keyed by its storage key, value held as JSON text. Works on SQLite for
local dev and on Postgres by swapping DATABASE_URL.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.orm import declarative_base

from cardscan.config import settings

Base = declarative_base()


class KeyValueEntry(Base):
    """One stored key and its serialised JSON value."""
    __tablename__ = "kv_entries"

    key = Column(String(512), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def get_engine(url: str | None = None):
    url = url or settings.effective_database_url
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=False, connect_args=connect_args)
