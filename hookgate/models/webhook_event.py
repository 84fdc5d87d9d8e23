"""
Webhook event audit ledger - one row per logical provider event, keyed by event id.
Rows are written before the handler runs so a crash mid-handler still leaves a trace.
The payload column only ever holds the sanitized copy.
"""
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, String, DateTime, Integer, Text, false
from sqlalchemy.dialects.postgresql import JSONB
from hookgate.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(255), primary_key=True)
    source = Column(String(50), nullable=False, index=True)
    event_type = Column(String(255), nullable=False)
    payload = Column(JSONB, nullable=True)
    payload_hash = Column(String(64), nullable=True, index=True)
    processed = Column(Boolean, nullable=False, default=False, server_default=false())
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    correlation_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source,
            "event_type": self.event_type,
            "payload": self.payload,
            "payload_hash": self.payload_hash,
            "processed": self.processed,
            "processed_at": self.processed_at,
            "error": self.error,
            "attempts": self.attempts,
            "correlation_id": self.correlation_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
