"""Transactional outbox for side effects, plus the in-app notification inbox."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text

from negosyo.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class OutboxEvent(Base):
    """A side-effect intent written in the same transaction as the mutation it describes."""

    __tablename__ = "outbox_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(30), nullable=False)  # notification, transcription, enrichment
    payload = Column(Text, nullable=False, default="{}")
    status = Column(String(20), nullable=False, default="pending")  # pending, delivered, dead
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_outbox_due", "status", "next_attempt_at"),
        Index("idx_outbox_kind", "kind"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    outbox_event_id = Column(String(36), unique=True, nullable=True)  # idempotent re-delivery
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    type = Column(String(30), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(Text, default="{}")
    read = Column(Boolean, nullable=False, default=False)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_notification_creator", "creator_id"),
        Index("idx_notification_read", "creator_id", "read"),
    )
