"""Immutable, append-only audit trail of lifecycle and ledger actions with SHA-256 hash chain."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String, Text

from negosyo.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    actor_id = Column(String(255), nullable=True)  # identity subject; NULL = system
    action = Column(String(50), nullable=False)
    target_type = Column(String(20), nullable=False)  # submission, creator, withdrawal, referral
    target_id = Column(String(36), nullable=False)
    details = Column(Text, default="{}")
    prev_hash = Column(String(64), nullable=True)
    entry_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_audit_action", "action"),
        Index("idx_audit_target", "target_type", "target_id"),
        Index("idx_audit_actor", "actor_id"),
        Index("idx_audit_created", "created_at"),
    )
