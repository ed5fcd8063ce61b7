"""Per-creator, per-period dashboard counters."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint

from negosyo.database import Base


def utcnow():
    return datetime.now(timezone.utc)


PERIOD_TYPES = ("daily", "monthly")

# Counter column -> whether it holds money (Numeric) rather than a count.
COUNTER_FIELDS: dict[str, bool] = {
    "submissions_count": False,
    "approved_count": False,
    "rejected_count": False,
    "leads_generated": False,
    "earnings_total": True,
    "websites_live": False,
    "referrals_count": False,
}


class AnalyticsBucket(Base):
    __tablename__ = "analytics_buckets"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    period_type = Column(String(10), nullable=False)  # daily, monthly
    period = Column(String(10), nullable=False)  # YYYY-MM-DD or YYYY-MM
    submissions_count = Column(Integer, nullable=False, default=0)
    approved_count = Column(Integer, nullable=False, default=0)
    rejected_count = Column(Integer, nullable=False, default=0)
    leads_generated = Column(Integer, nullable=False, default=0)
    earnings_total = Column(Numeric(14, 2), nullable=False, default=0)
    websites_live = Column(Integer, nullable=False, default=0)
    referrals_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("creator_id", "period_type", "period", name="uq_analytics_creator_period"),
        Index("idx_analytics_period", "period_type", "period"),
    )
