"""Business submissions, the leads seeded from them and notes on those leads."""
import enum
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from negosyo.config import settings
from negosyo.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class SubmissionStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    WEBSITE_GENERATED = "website_generated"
    DEPLOYED = "deployed"
    PAID = "paid"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value: str) -> "SubmissionStatus":
        """Reject free-form strings at the boundary."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown submission status: {value!r}") from None


class TranscriptionStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


class InterviewKind(str, enum.Enum):
    VIDEO = "video"
    AUDIO = "audio"


class Submission(Base):
    """One business-capture workflow instance. Mutated only through named transitions."""
    __tablename__ = "submissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)

    business_name = Column(String(200), nullable=False)
    business_type = Column(String(100), nullable=False)
    business_description = Column(Text, nullable=True)
    owner_name = Column(String(200), nullable=False)
    owner_phone = Column(String(30), nullable=False)
    owner_email = Column(String(255), nullable=True)
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=False)
    province = Column(String(100), nullable=True)
    barangay = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    has_products = Column(Boolean, nullable=True)

    photos_json = Column(Text, nullable=False, default="[]")  # ordered storage keys
    photo_count = Column(Integer, nullable=False, default=0)
    video_key = Column(String(500), nullable=True)
    audio_key = Column(String(500), nullable=True)
    transcript = Column(Text, nullable=True)
    transcription_status = Column(String(20), nullable=True)
    transcription_error = Column(Text, nullable=True)

    creator_payout = Column(Numeric(14, 2), nullable=True)
    amount = Column(Numeric(14, 2), nullable=True)  # fixed intake amount, set on submit

    status = Column(String(30), nullable=False, default=SubmissionStatus.DRAFT.value)
    rejection_reason = Column(Text, nullable=True)
    website_url = Column(String(500), nullable=True)
    reviewed_by = Column(String(255), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # Anything past draft has been through the photo guard.
        CheckConstraint(
            f"status = 'draft' OR photo_count >= {settings.min_submission_photos}",
            name="ck_submission_photos_past_draft",
        ),
        Index("idx_submission_creator", "creator_id"),
        Index("idx_submission_status", "status"),
        Index("idx_submission_creator_status", "creator_id", "status"),
        Index("idx_submission_city", "city"),
    )

    @property
    def photos(self) -> list[str]:
        return json.loads(self.photos_json or "[]")

    @photos.setter
    def photos(self, keys: list[str]) -> None:
        self.photos_json = json.dumps(list(keys))
        self.photo_count = len(keys)

    @property
    def lifecycle_status(self) -> SubmissionStatus:
        return SubmissionStatus.parse(self.status)


class Lead(Base):
    """A business-owner contact generated by a submission or its website."""
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    submission_id = Column(String(36), ForeignKey("submissions.id"), nullable=False)
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    source = Column(String(20), nullable=False)  # direct, website, qr_code
    name = Column(String(200), nullable=False)
    phone = Column(String(30), nullable=False)
    email = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="new")  # new, contacted, qualified, converted, lost
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_lead_submission", "submission_id"),
        Index("idx_lead_creator", "creator_id"),
        Index("idx_lead_status", "status"),
    )


class LeadNote(Base):
    """A creator's follow-up note on one of their leads."""
    __tablename__ = "lead_notes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=False)
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_lead_note_lead", "lead_id"),
    )
