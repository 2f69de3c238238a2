"""
SQLAlchemy models for the sync state database.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateEntry(Base):
    """One key of the flat key/value sync state (settings, history, checkpoints...)."""
    __tablename__ = 'state'

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class SyncLog(Base):
    """Log record kept for the web API's log view."""
    __tablename__ = 'sync_log'

    id = Column(Integer, primary_key=True)
    level = Column(String(20), nullable=False)
    logger = Column(String(100), nullable=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)  # event key/values, e.g. book title
    sync_run_id = Column(String(50), index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'level': self.level,
            'logger': self.logger,
            'message': self.message,
            'details': self.details,
            'sync_run_id': self.sync_run_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
