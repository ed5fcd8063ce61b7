"""Submission lifecycle: drafts, patches, and the compare-and-swap status machine.

Every transition is a conditional UPDATE on the current status, followed by
its counters, audit entry and outbox intents in the same transaction. Two
admins approving the same submission cannot both succeed; the loser gets
InvalidTransitionError with the status it actually found.
"""
import json
import logging
import uuid
from datetime import datetime, timezone

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import settings
from negosyo.core.exceptions import (
    ConcurrencyError,
    InvalidTransitionError,
    SubmissionNotFoundError,
    ValidationError,
)
from negosyo.models.creator import Creator
from negosyo.models.submission import Lead, Submission, SubmissionStatus, TranscriptionStatus
from negosyo.services import analytics_service, audit_service, notification_service, outbox_service

logger = logging.getLogger(__name__)

S = SubmissionStatus

# target -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[SubmissionStatus, tuple[SubmissionStatus, ...]] = {
    S.SUBMITTED: (S.DRAFT,),
    S.APPROVED: (S.SUBMITTED,),
    S.REJECTED: (S.SUBMITTED,),
    S.DRAFT: (S.REJECTED,),
    S.WEBSITE_GENERATED: (S.APPROVED,),
    S.DEPLOYED: (S.WEBSITE_GENERATED,),
    S.PAID: (S.DEPLOYED,),
    S.COMPLETED: (S.PAID,),
}

# Statuses in which the creator (or the sync engine) may still patch content.
EDITABLE_STATUSES = (S.DRAFT, S.SUBMITTED, S.REJECTED)

_BUSINESS_FIELDS = {
    "business_name", "business_type", "business_description", "owner_name", "owner_phone",
    "owner_email", "address", "city", "province", "barangay", "postal_code", "latitude",
    "longitude", "has_products",
}
_MEDIA_FIELDS = {"photos", "video_key", "audio_key"}
# Once money has moved the payout is history, not a setting.
PAYOUT_LOCKED_STATUSES = (S.PAID, S.COMPLETED)
_REQUIRED_ON_CREATE = ("business_name", "business_type", "owner_name", "owner_phone", "address", "city")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    return current in ALLOWED_TRANSITIONS.get(target, ())


async def get_submission_model(db: AsyncSession, submission_id: str, *, refresh: bool = False) -> Submission:
    query = select(Submission).where(Submission.id == submission_id)
    if refresh:
        query = query.execution_options(populate_existing=True)
    result = await db.execute(query)
    submission = result.scalar_one_or_none()
    if not submission:
        raise SubmissionNotFoundError(submission_id)
    return submission


async def _owned_submission(db: AsyncSession, submission_id: str, creator_id: str | None) -> Submission:
    submission = await get_submission_model(db, submission_id, refresh=True)
    if creator_id is not None and submission.creator_id != creator_id:
        # Other creators' submissions are indistinguishable from missing ones.
        raise SubmissionNotFoundError(submission_id)
    return submission


async def create_submission(db: AsyncSession, creator_id: str, fields: dict) -> dict:
    """Create a draft. Photos may be supplied now or patched in later."""
    missing = [f for f in _REQUIRED_ON_CREATE if not fields.get(f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    submission = Submission(
        id=str(uuid.uuid4()),
        creator_id=creator_id,
        status=S.DRAFT.value,
        **{k: v for k, v in fields.items() if k in _BUSINESS_FIELDS},
    )
    submission.photos = list(fields.get("photos") or [])
    db.add(submission)
    await db.flush()

    await db.execute(
        update(Creator)
        .where(Creator.id == creator_id)
        .values(submission_count=Creator.submission_count + 1, last_active_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    await audit_service.log_event(
        db, "submission.created", target_type="submission", target_id=submission.id, actor_id=creator_id,
    )
    await notification_service.notify(
        db, creator_id, "submission_created", "Submission Created",
        f"Your draft for {submission.business_name} has been saved.",
        {"submission_id": submission.id},
    )
    await db.commit()
    await db.refresh(submission)
    logger.info("Submission created: %s by creator %s", submission.id, creator_id)
    return submission_to_dict(submission)


async def update_submission(
    db: AsyncSession,
    submission_id: str,
    patch: dict,
    *,
    creator_id: str | None = None,
) -> dict:
    """Patch business info and media. ``status`` is never patchable.

    Past draft, the photo list may not shrink below the submission minimum.
    Setting a video or audio key queues a transcription and prices the
    submission from the configured interview payouts; the creator never
    names their own payout.
    """
    if "status" in patch:
        raise ValidationError("status can only change through a lifecycle transition")
    unknown = set(patch) - _BUSINESS_FIELDS - _MEDIA_FIELDS
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    submission = await _owned_submission(db, submission_id, creator_id)
    status = submission.lifecycle_status
    if status not in EDITABLE_STATUSES:
        raise ValidationError(f"Submission is '{status.value}' and can no longer be edited")

    if "photos" in patch:
        photos = list(patch["photos"] or [])
        if status != S.DRAFT and len(photos) < settings.min_submission_photos:
            raise ValidationError(
                f"A {status.value} submission needs at least {settings.min_submission_photos} photos"
            )
        submission.photos = photos

    for key in _BUSINESS_FIELDS & set(patch):
        setattr(submission, key, patch[key])

    media_changed = False
    for key in ("video_key", "audio_key"):
        if key in patch and patch[key] and patch[key] != getattr(submission, key):
            setattr(submission, key, patch[key])
            media_changed = True

    if media_changed:
        submission.creator_payout = interview_payout(submission)
        submission.transcription_status = TranscriptionStatus.PROCESSING.value
        submission.transcription_error = None
        await outbox_service.enqueue(db, "transcription", {"submission_id": submission.id})

    submission.updated_at = _utcnow()
    await db.commit()
    await db.refresh(submission)
    return submission_to_dict(submission)


def interview_payout(submission: Submission) -> float | None:
    """Video pays more than audio; a video with a parallel audio track is still a video."""
    if submission.video_key:
        return settings.video_interview_payout
    if submission.audio_key:
        return settings.audio_interview_payout
    return None


async def set_payout(
    db: AsyncSession, submission_id: str, amount: float, *, actor_id: str | None = None
) -> dict:
    """Admin override of the interview payout, allowed until the submission is paid.

    The write is conditioned on the status read here, so an override racing
    ``mark_paid`` either lands before settlement or raises ConcurrencyError.
    """
    if amount < 0:
        raise ValidationError("creator_payout cannot be negative")
    submission = await get_submission_model(db, submission_id, refresh=True)
    if submission.lifecycle_status in PAYOUT_LOCKED_STATUSES:
        raise ValidationError(f"Submission is '{submission.status}'; its payout is settled")

    previous = submission.creator_payout
    result = await db.execute(
        update(Submission)
        .where(Submission.id == submission_id, Submission.status == submission.status)
        .values(creator_payout=amount, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConcurrencyError(f"Submission {submission_id} changed status while its payout was being set")
    await audit_service.log_event(
        db, "submission.payout_set", target_type="submission", target_id=submission_id,
        actor_id=actor_id, details={"from": str(previous), "to": str(amount)},
    )
    await db.commit()
    logger.info("Submission %s payout set to %s by %s", submission_id, amount, actor_id)
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def compare_and_set_status(
    db: AsyncSession,
    submission_id: str,
    target: SubmissionStatus,
    *,
    extra_conditions: tuple = (),
    values: dict | None = None,
    condition_error: Exception | None = None,
) -> None:
    """UPDATE ... WHERE status IN (allowed sources). Raises if nothing matched.

    A miss with the status still in the sources means ``extra_conditions``
    failed: ``condition_error`` is raised if given, else ConcurrencyError.
    """
    sources = [s.value for s in ALLOWED_TRANSITIONS[target]]
    now = _utcnow()
    result = await db.execute(
        update(Submission)
        .where(Submission.id == submission_id, Submission.status.in_(sources), *extra_conditions)
        .values(status=target.value, updated_at=now, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await get_submission_model(db, submission_id, refresh=True)
        if current.status in sources and extra_conditions:
            raise condition_error or ConcurrencyError(
                f"Submission {submission_id} changed while moving to '{target.value}'"
            )
        raise InvalidTransitionError("Submission", current.status, target.value)


async def submit(db: AsyncSession, submission_id: str, *, creator_id: str | None = None) -> dict:
    """draft -> submitted. Seeds the owner as a lead and queues enrichment."""
    submission = await _owned_submission(db, submission_id, creator_id)
    if submission.status == S.DRAFT.value and (submission.photo_count or 0) < settings.min_submission_photos:
        raise ValidationError(
            f"Submission needs at least {settings.min_submission_photos} photos before it can be submitted"
        )

    now = _utcnow()
    await compare_and_set_status(
        db, submission_id, S.SUBMITTED,
        extra_conditions=(Submission.photo_count >= settings.min_submission_photos,),
        values={"submitted_at": now, "amount": settings.submission_intake_amount},
        condition_error=ValidationError(
            f"Submission needs at least {settings.min_submission_photos} photos before it can be submitted"
        ),
    )
    lead = Lead(
        id=str(uuid.uuid4()),
        submission_id=submission_id,
        creator_id=submission.creator_id,
        source="direct",
        name=submission.owner_name,
        phone=submission.owner_phone,
        email=submission.owner_email,
        status="new",
    )
    db.add(lead)
    await analytics_service.record(
        db, submission.creator_id, {"submissions_count": 1, "leads_generated": 1}, at=now,
    )
    await outbox_service.enqueue(db, "enrichment", {"submission_id": submission_id})
    await notification_service.notify(
        db, submission.creator_id, "submission_submitted", "Submission Received",
        f"{submission.business_name} has been submitted for review.",
        {"submission_id": submission_id},
    )
    await audit_service.log_event(
        db, "submission.submitted", target_type="submission", target_id=submission_id,
        actor_id=creator_id, details={"photo_count": submission.photo_count},
    )
    await db.commit()
    logger.info("Submission %s submitted", submission_id)
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def approve(db: AsyncSession, submission_id: str, *, actor_id: str | None = None) -> dict:
    submission = await get_submission_model(db, submission_id)
    now = _utcnow()
    await compare_and_set_status(
        db, submission_id, S.APPROVED, values={"reviewed_by": actor_id, "reviewed_at": now},
    )
    await analytics_service.record(db, submission.creator_id, {"approved_count": 1}, at=now)
    await notification_service.notify(
        db, submission.creator_id, "submission_approved", "Submission Approved",
        f"{submission.business_name} has been approved.",
        {"submission_id": submission_id},
    )
    await audit_service.log_event(
        db, "submission.approved", target_type="submission", target_id=submission_id, actor_id=actor_id,
    )
    await db.commit()
    logger.info("Submission %s approved by %s", submission_id, actor_id)
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def reject(
    db: AsyncSession, submission_id: str, *, reason: str | None = None, actor_id: str | None = None
) -> dict:
    submission = await get_submission_model(db, submission_id)
    now = _utcnow()
    await compare_and_set_status(
        db, submission_id, S.REJECTED,
        values={"rejection_reason": reason, "reviewed_by": actor_id, "reviewed_at": now},
    )
    await analytics_service.record(db, submission.creator_id, {"rejected_count": 1}, at=now)
    body = f"{submission.business_name} was not approved."
    if reason:
        body = f"{body} Reason: {reason}"
    await notification_service.notify(
        db, submission.creator_id, "submission_rejected", "Submission Rejected", body,
        {"submission_id": submission_id, "reason": reason},
    )
    await audit_service.log_event(
        db, "submission.rejected", target_type="submission", target_id=submission_id,
        actor_id=actor_id, details={"reason": reason},
    )
    await db.commit()
    logger.info("Submission %s rejected by %s", submission_id, actor_id)
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def reopen(db: AsyncSession, submission_id: str, *, creator_id: str | None = None) -> dict:
    """rejected -> draft, so the creator can fix and resubmit the same record."""
    await _owned_submission(db, submission_id, creator_id)
    await compare_and_set_status(db, submission_id, S.DRAFT, values={"rejection_reason": None})
    await audit_service.log_event(
        db, "submission.reopened", target_type="submission", target_id=submission_id, actor_id=creator_id,
    )
    await db.commit()
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def mark_website_generated(
    db: AsyncSession, submission_id: str, website_url: str, *, actor_id: str | None = None
) -> dict:
    if not website_url:
        raise ValidationError("website_url is required")
    await get_submission_model(db, submission_id)
    await compare_and_set_status(db, submission_id, S.WEBSITE_GENERATED, values={"website_url": website_url})
    await audit_service.log_event(
        db, "submission.website_generated", target_type="submission", target_id=submission_id,
        actor_id=actor_id, details={"website_url": website_url},
    )
    await db.commit()
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def mark_deployed(
    db: AsyncSession, submission_id: str, website_url: str, *, actor_id: str | None = None
) -> dict:
    if not website_url:
        raise ValidationError("website_url is required")
    submission = await get_submission_model(db, submission_id)
    now = _utcnow()
    await compare_and_set_status(db, submission_id, S.DEPLOYED, values={"website_url": website_url})
    await analytics_service.record(db, submission.creator_id, {"websites_live": 1}, at=now)
    await notification_service.notify(
        db, submission.creator_id, "website_live", "Website Is Live",
        f"The website for {submission.business_name} is now live.",
        {"submission_id": submission_id, "website_url": website_url},
    )
    await audit_service.log_event(
        db, "submission.deployed", target_type="submission", target_id=submission_id,
        actor_id=actor_id, details={"website_url": website_url},
    )
    await db.commit()
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def complete(db: AsyncSession, submission_id: str, *, actor_id: str | None = None) -> dict:
    """paid -> completed: administrative close-out."""
    await get_submission_model(db, submission_id)
    await compare_and_set_status(db, submission_id, S.COMPLETED)
    await audit_service.log_event(
        db, "submission.completed", target_type="submission", target_id=submission_id, actor_id=actor_id,
    )
    await db.commit()
    return submission_to_dict(await get_submission_model(db, submission_id, refresh=True))


async def record_transcription(
    db: AsyncSession,
    submission_id: str,
    status: TranscriptionStatus,
    *,
    transcript: str | None = None,
    error: str | None = None,
) -> None:
    values = {"transcription_status": status.value, "transcription_error": error}
    if transcript is not None:
        values["transcript"] = transcript
    await db.execute(
        update(Submission)
        .where(Submission.id == submission_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def push_for_enrichment(
    db: AsyncSession,
    event_id: str,
    payload: dict,
    http_client: httpx.AsyncClient | None = None,
) -> None:
    """Outbox handler: hand a newly submitted business to the content pipeline."""
    if not settings.enrichment_webhook_url:
        logger.debug("No enrichment endpoint configured; skipping %s", payload.get("submission_id"))
        return
    submission = await get_submission_model(db, payload["submission_id"])
    body = {"event_id": event_id, "submission": submission_to_dict(submission)}
    if http_client is not None:
        response = await http_client.post(settings.enrichment_webhook_url, json=body, timeout=30)
    else:
        async with httpx.AsyncClient(timeout=30) as client:
            response = await client.post(settings.enrichment_webhook_url, json=body)
    if not 200 <= response.status_code < 300:
        raise RuntimeError(f"Enrichment endpoint returned HTTP {response.status_code}")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_submission(db: AsyncSession, submission_id: str, *, creator_id: str | None = None) -> dict:
    return submission_to_dict(await _owned_submission(db, submission_id, creator_id))


async def get_submission_with_creator(db: AsyncSession, submission_id: str) -> dict:
    result = await db.execute(
        select(Submission, Creator)
        .join(Creator, Creator.id == Submission.creator_id)
        .where(Submission.id == submission_id)
    )
    row = result.one_or_none()
    if row is None:
        raise SubmissionNotFoundError(submission_id)
    submission, creator = row
    data = submission_to_dict(submission)
    data["creator"] = {
        "id": creator.id,
        "email": creator.email,
        "first_name": creator.first_name,
        "last_name": creator.last_name,
        "phone": creator.phone,
    }
    return data


async def list_by_creator(db: AsyncSession, creator_id: str, status: str | None = None) -> list[dict]:
    query = select(Submission).where(Submission.creator_id == creator_id)
    if status:
        query = query.where(Submission.status == SubmissionStatus.parse(status).value)
    result = await db.execute(query.order_by(Submission.created_at.desc()))
    return [submission_to_dict(s) for s in result.scalars().all()]


async def get_latest_draft(db: AsyncSession, creator_id: str) -> dict | None:
    result = await db.execute(
        select(Submission)
        .where(Submission.creator_id == creator_id, Submission.status == S.DRAFT.value)
        .order_by(Submission.updated_at.desc())
        .limit(1)
    )
    submission = result.scalar_one_or_none()
    return submission_to_dict(submission) if submission else None


async def list_submissions(
    db: AsyncSession, *, status: str | None = None, page: int = 1, page_size: int = 20
) -> dict:
    """Admin: every submission, newest first, optionally filtered by status."""
    query = select(Submission)
    count_query = select(func.count(Submission.id))
    if status:
        parsed = SubmissionStatus.parse(status).value
        query = query.where(Submission.status == parsed)
        count_query = count_query.where(Submission.status == parsed)
    total = (await db.execute(count_query)).scalar() or 0
    page_size = max(1, min(page_size, 100))
    result = await db.execute(
        query.order_by(Submission.created_at.desc()).offset((max(page, 1) - 1) * page_size).limit(page_size)
    )
    return {
        "submissions": [submission_to_dict(s) for s in result.scalars().all()],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


def submission_to_dict(s: Submission) -> dict:
    return {
        "id": s.id,
        "creator_id": s.creator_id,
        "business_name": s.business_name,
        "business_type": s.business_type,
        "business_description": s.business_description,
        "owner_name": s.owner_name,
        "owner_phone": s.owner_phone,
        "owner_email": s.owner_email,
        "address": s.address,
        "city": s.city,
        "province": s.province,
        "barangay": s.barangay,
        "postal_code": s.postal_code,
        "latitude": s.latitude,
        "longitude": s.longitude,
        "has_products": s.has_products,
        "photos": json.loads(s.photos_json or "[]"),
        "photo_count": s.photo_count or 0,
        "video_key": s.video_key,
        "audio_key": s.audio_key,
        "transcript": s.transcript,
        "transcription_status": s.transcription_status,
        "transcription_error": s.transcription_error,
        "creator_payout": float(s.creator_payout) if s.creator_payout is not None else None,
        "amount": float(s.amount) if s.amount is not None else None,
        "status": s.status,
        "rejection_reason": s.rejection_reason,
        "website_url": s.website_url,
        "reviewed_by": s.reviewed_by,
        "reviewed_at": s.reviewed_at.isoformat() if s.reviewed_at else None,
        "submitted_at": s.submitted_at.isoformat() if s.submitted_at else None,
        "paid_at": s.paid_at.isoformat() if s.paid_at else None,
        "created_at": s.created_at.isoformat() if s.created_at else None,
        "updated_at": s.updated_at.isoformat() if s.updated_at else None,
    }
