"""Leads: inquiries generated by a submission or its live website, plus the creator's notes on them."""
import logging
import uuid

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.exceptions import NotFoundError, ValidationError
from negosyo.models.submission import Lead, LeadNote
from negosyo.services import analytics_service, notification_service
from negosyo.services.submission_service import get_submission_model

logger = logging.getLogger(__name__)

LEAD_SOURCES = ("direct", "website", "qr_code")
LEAD_STATUSES = ("new", "contacted", "qualified", "converted", "lost")


async def create_lead(
    db: AsyncSession,
    submission_id: str,
    *,
    source: str,
    name: str,
    phone: str,
    email: str | None = None,
    message: str | None = None,
) -> dict:
    """Record an inquiry against a submission and credit its creator's lead counter."""
    if source not in LEAD_SOURCES:
        raise ValidationError(f"source must be one of: {', '.join(LEAD_SOURCES)}")
    submission = await get_submission_model(db, submission_id)

    lead = Lead(
        id=str(uuid.uuid4()),
        submission_id=submission_id,
        creator_id=submission.creator_id,
        source=source,
        name=name,
        phone=phone,
        email=email,
        message=message,
        status="new",
    )
    db.add(lead)
    await analytics_service.record(db, submission.creator_id, {"leads_generated": 1})
    await notification_service.notify(
        db, submission.creator_id, "new_lead", "New Lead!",
        f'{name} inquired about "{submission.business_name}".',
        {"submission_id": submission_id, "lead_id": lead.id},
    )
    await db.commit()
    await db.refresh(lead)
    logger.info("Lead %s created for submission %s via %s", lead.id, submission_id, source)
    return _lead_to_dict(lead)


async def update_status(db: AsyncSession, lead_id: str, status: str, *, creator_id: str | None = None) -> dict:
    if status not in LEAD_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(LEAD_STATUSES)}")
    conditions = [Lead.id == lead_id]
    if creator_id is not None:
        conditions.append(Lead.creator_id == creator_id)
    result = await db.execute(
        update(Lead).where(*conditions).values(status=status).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("Lead", lead_id)
    await db.commit()
    lead = await db.execute(select(Lead).where(Lead.id == lead_id).execution_options(populate_existing=True))
    return _lead_to_dict(lead.scalar_one())


async def list_by_submission(db: AsyncSession, submission_id: str) -> list[dict]:
    result = await db.execute(
        select(Lead).where(Lead.submission_id == submission_id).order_by(Lead.created_at.desc())
    )
    return [_lead_to_dict(lead) for lead in result.scalars().all()]


async def list_by_creator(db: AsyncSession, creator_id: str, status: str | None = None) -> list[dict]:
    query = select(Lead).where(Lead.creator_id == creator_id)
    if status:
        query = query.where(Lead.status == status)
    result = await db.execute(query.order_by(Lead.created_at.desc()))
    return [_lead_to_dict(lead) for lead in result.scalars().all()]


async def count_by_submission(db: AsyncSession, submission_id: str) -> dict:
    result = await db.execute(
        select(Lead.status, func.count(Lead.id))
        .where(Lead.submission_id == submission_id)
        .group_by(Lead.status)
    )
    counts = {status: 0 for status in LEAD_STATUSES}
    for status, count in result.all():
        counts[status] = count
    counts["total"] = sum(counts.values())
    return counts


async def _owned_lead(db: AsyncSession, lead_id: str, creator_id: str | None) -> Lead:
    result = await db.execute(select(Lead).where(Lead.id == lead_id))
    lead = result.scalar_one_or_none()
    if lead is None or (creator_id is not None and lead.creator_id != creator_id):
        raise NotFoundError("Lead", lead_id)
    return lead


async def add_note(db: AsyncSession, lead_id: str, creator_id: str, content: str) -> dict:
    """Attach a follow-up note to one of the creator's own leads."""
    content = (content or "").strip()
    if not content:
        raise ValidationError("Note content cannot be empty")
    await _owned_lead(db, lead_id, creator_id)
    note = LeadNote(id=str(uuid.uuid4()), lead_id=lead_id, creator_id=creator_id, content=content)
    db.add(note)
    await db.commit()
    await db.refresh(note)
    logger.info("Note %s added to lead %s", note.id, lead_id)
    return _note_to_dict(note)


async def list_notes(db: AsyncSession, lead_id: str, *, creator_id: str | None = None) -> list[dict]:
    """Notes on a lead, newest first."""
    await _owned_lead(db, lead_id, creator_id)
    result = await db.execute(
        select(LeadNote).where(LeadNote.lead_id == lead_id).order_by(LeadNote.created_at.desc())
    )
    return [_note_to_dict(n) for n in result.scalars().all()]


async def delete_note(db: AsyncSession, note_id: str, *, creator_id: str | None = None) -> dict:
    conditions = [LeadNote.id == note_id]
    if creator_id is not None:
        conditions.append(LeadNote.creator_id == creator_id)
    result = await db.execute(delete(LeadNote).where(*conditions).execution_options(synchronize_session=False))
    if result.rowcount != 1:
        raise NotFoundError("Lead note", note_id)
    await db.commit()
    return {"deleted": note_id}


def _note_to_dict(note: LeadNote) -> dict:
    return {
        "id": note.id,
        "lead_id": note.lead_id,
        "creator_id": note.creator_id,
        "content": note.content,
        "created_at": note.created_at.isoformat() if note.created_at else None,
    }


def _lead_to_dict(lead: Lead) -> dict:
    return {
        "id": lead.id,
        "submission_id": lead.submission_id,
        "creator_id": lead.creator_id,
        "source": lead.source,
        "name": lead.name,
        "phone": lead.phone,
        "email": lead.email,
        "message": lead.message,
        "status": lead.status,
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }
