"""Ledger models: append-only earnings, withdrawals, payout methods, referrals."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from negosyo.database import Base


def utcnow():
    return datetime.now(timezone.utc)


EARNING_TYPES = ("submission_approved", "referral_bonus", "lead_bonus")
PAYOUT_METHODS = ("gcash", "maya", "bank_transfer")


class Earning(Base):
    """Immutable earning record. Created only by settlement, never updated."""

    __tablename__ = "earnings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    submission_id = Column(String(36), ForeignKey("submissions.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    type = Column(String(30), nullable=False)  # submission_approved, referral_bonus, lead_bonus
    status = Column(String(20), nullable=False, default="available")  # pending, available, withdrawn
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        # One earning of each type per (creator, submission): settlement can never append twice.
        UniqueConstraint("creator_id", "submission_id", "type", name="uq_earning_creator_submission_type"),
        CheckConstraint("amount > 0", name="ck_earning_amount_pos"),
        Index("idx_earning_creator", "creator_id"),
        Index("idx_earning_submission", "submission_id"),
    )


class Withdrawal(Base):
    """Creator-initiated debit. Balance is reserved at creation, committed or released later."""

    __tablename__ = "withdrawals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    payout_method = Column(String(20), nullable=False)  # gcash, maya, bank_transfer
    account_details = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, processing, completed, failed
    reservation_status = Column(String(20), nullable=False, default="reserved")  # reserved, committed, released
    transaction_ref = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_pos"),
        Index("idx_withdrawal_creator", "creator_id"),
        Index("idx_withdrawal_status", "status"),
    )


class PayoutMethod(Base):
    __tablename__ = "payout_methods"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    type = Column(String(20), nullable=False)
    account_name = Column(String(200), nullable=False)
    account_number = Column(String(100), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_payout_method_creator", "creator_id"),)


class Referral(Base):
    """Referrer -> referred link. Moves pending -> qualified exactly once."""

    __tablename__ = "referrals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    referrer_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    referred_id = Column(String(36), ForeignKey("creators.id"), unique=True, nullable=False)
    referral_code = Column(String(16), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, qualified, paid
    bonus_amount = Column(Numeric(14, 2), nullable=True)
    qualifying_submission_id = Column(String(36), nullable=True)
    qualified_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("referrer_id != referred_id", name="ck_referral_not_self"),
        Index("idx_referral_referrer", "referrer_id"),
        Index("idx_referral_status", "status"),
    )
