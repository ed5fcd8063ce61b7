"""Creator accounts: field agents who own submissions and a ledger balance."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Numeric, String

from negosyo.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class Creator(Base):
    """Ledger owner. Created on first authenticated appearance, never deleted."""
    __tablename__ = "creators"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    identity_ref = Column(String(255), unique=True, nullable=False)  # opaque IdP subject
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    balance = Column(Numeric(14, 2), nullable=False, default=0)
    total_earnings = Column(Numeric(14, 2), nullable=False, default=0)
    total_withdrawn = Column(Numeric(14, 2), nullable=False, default=0)
    referral_code = Column(String(16), unique=True, nullable=False)
    certified_at = Column(DateTime(timezone=True), nullable=True)
    role = Column(String(20), nullable=False, default="creator")  # creator, admin
    status = Column(String(20), nullable=False, default="active")  # active, deactivated
    submission_count = Column(Integer, nullable=False, default=0)
    last_active_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_creator_balance_nonneg"),
        Index("idx_creator_email", "email"),
        Index("idx_creator_status", "status"),
    )
