"""Creator-facing submission endpoints: drafts, patches, submit, leads and lead notes."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import ledger_service, lead_service, submission_service

router = APIRouter(prefix="/submissions", tags=["submissions"])


class SubmissionFields(BaseModel):
    business_name: Optional[str] = Field(None, max_length=200)
    business_type: Optional[str] = Field(None, max_length=100)
    business_description: Optional[str] = None
    owner_name: Optional[str] = Field(None, max_length=200)
    owner_phone: Optional[str] = Field(None, max_length=30)
    owner_email: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    province: Optional[str] = Field(None, max_length=100)
    barangay: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    has_products: Optional[bool] = None
    photos: Optional[list[str]] = None

class SubmissionPatch(SubmissionFields):
    video_key: Optional[str] = None
    audio_key: Optional[str] = None

class LeadCreateRequest(BaseModel):
    source: str = Field("website", pattern="^(website|qr_code)$")
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=3, max_length=30)
    email: Optional[str] = Field(None, max_length=255)
    message: Optional[str] = Field(None, max_length=2000)

class LeadStatusRequest(BaseModel):
    status: str

class LeadNoteRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


@router.post("", status_code=201)
async def create_submission(
    req: SubmissionFields,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await submission_service.create_submission(db, creator_id, req.model_dump(exclude_none=True))


@router.get("")
async def list_my_submissions(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    try:
        submissions = await submission_service.list_by_creator(db, creator_id, status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"submissions": submissions, "count": len(submissions)}


@router.get("/latest-draft")
async def get_latest_draft(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """The draft to resume after an app restart, if any."""
    return {"draft": await submission_service.get_latest_draft(db, creator_id)}


@router.get("/leads")
async def list_my_leads(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    leads = await lead_service.list_by_creator(db, creator_id, status)
    return {"leads": leads, "count": len(leads)}


@router.patch("/leads/{lead_id}")
async def update_lead_status(
    lead_id: str,
    req: LeadStatusRequest,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await lead_service.update_status(db, lead_id, req.status, creator_id=creator_id)


@router.get("/leads/{lead_id}/notes")
async def list_lead_notes(
    lead_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    notes = await lead_service.list_notes(db, lead_id, creator_id=creator_id)
    return {"notes": notes, "count": len(notes)}


@router.post("/leads/{lead_id}/notes", status_code=201)
async def add_lead_note(
    lead_id: str,
    req: LeadNoteRequest,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await lead_service.add_note(db, lead_id, creator_id, req.content)


@router.delete("/leads/notes/{note_id}")
async def delete_lead_note(
    note_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await lead_service.delete_note(db, note_id, creator_id=creator_id)


@router.get("/{submission_id}")
async def get_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await submission_service.get_submission(db, submission_id, creator_id=creator_id)


@router.patch("/{submission_id}")
async def update_submission(
    submission_id: str,
    req: SubmissionPatch,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Partial update; only the fields present in the body are touched."""
    return await submission_service.update_submission(
        db, submission_id, req.model_dump(exclude_unset=True), creator_id=creator_id,
    )


@router.post("/{submission_id}/submit")
async def submit_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await submission_service.submit(db, submission_id, creator_id=creator_id)


@router.post("/{submission_id}/reopen")
async def reopen_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await submission_service.reopen(db, submission_id, creator_id=creator_id)


@router.get("/{submission_id}/leads")
async def list_submission_leads(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    await submission_service.get_submission(db, submission_id, creator_id=creator_id)
    leads = await lead_service.list_by_submission(db, submission_id)
    counts = await lead_service.count_by_submission(db, submission_id)
    return {"leads": leads, "counts": counts}


@router.post("/{submission_id}/leads", status_code=201)
async def create_website_lead(
    submission_id: str,
    req: LeadCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Public: an inquiry from the business's generated website or QR code."""
    return await lead_service.create_lead(
        db, submission_id,
        source=req.source, name=req.name, phone=req.phone, email=req.email, message=req.message,
    )


@router.get("/{submission_id}/earnings")
async def list_submission_earnings(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    await submission_service.get_submission(db, submission_id, creator_id=creator_id)
    earnings = await ledger_service.list_earnings_by_submission(db, submission_id)
    # Referral bonuses on this submission belong to the referrer, not to this creator.
    return {"earnings": [e for e in earnings if e["creator_id"] == creator_id]}
