"""Admin endpoints: submission review, settlement, payouts and the outbox."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import Identity, require_admin
from negosyo.database import get_db
from negosyo.services import (
    analytics_service,
    creator_service,
    ledger_service,
    outbox_service,
    referral_service,
    submission_service,
    withdrawal_service,
)

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)

class PayoutRequest(BaseModel):
    amount: float = Field(..., ge=0)

class WebsiteRequest(BaseModel):
    website_url: str = Field(..., min_length=1, max_length=500)

class WithdrawalStatusRequest(BaseModel):
    status: str
    transaction_ref: Optional[str] = Field(None, max_length=200)

class CreatorStatusRequest(BaseModel):
    status: str


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------

@router.get("/submissions")
async def list_submissions(
    status: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    try:
        return await submission_service.list_submissions(db, status=status, page=page, page_size=page_size)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await submission_service.get_submission_with_creator(db, submission_id)

@router.post("/submissions/{submission_id}/approve")
async def approve_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await submission_service.approve(db, submission_id, actor_id=admin.subject)

@router.post("/submissions/{submission_id}/reject")
async def reject_submission(
    submission_id: str,
    req: RejectRequest,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await submission_service.reject(db, submission_id, reason=req.reason, actor_id=admin.subject)

@router.post("/submissions/{submission_id}/payout")
async def set_submission_payout(
    submission_id: str,
    req: PayoutRequest,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    """Override the interview payout before settlement."""
    return await submission_service.set_payout(db, submission_id, req.amount, actor_id=admin.subject)

@router.post("/submissions/{submission_id}/website")
async def mark_website_generated(
    submission_id: str,
    req: WebsiteRequest,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await submission_service.mark_website_generated(
        db, submission_id, req.website_url, actor_id=admin.subject,
    )

@router.post("/submissions/{submission_id}/deployed")
async def mark_deployed(
    submission_id: str,
    req: WebsiteRequest,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    """Confirm the website is live at ``website_url``."""
    return await submission_service.mark_deployed(db, submission_id, req.website_url, actor_id=admin.subject)

@router.post("/submissions/{submission_id}/mark-paid")
async def mark_paid(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    """Settle a deployed submission: credit the creator and, once per referral, the referrer."""
    return await ledger_service.mark_paid(db, submission_id, actor_id=admin.subject)

@router.post("/submissions/{submission_id}/complete")
async def complete_submission(
    submission_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await submission_service.complete(db, submission_id, actor_id=admin.subject)


# ---------------------------------------------------------------------------
# Withdrawals and referrals
# ---------------------------------------------------------------------------

@router.get("/withdrawals")
async def list_withdrawals(
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    withdrawals = await withdrawal_service.list_withdrawals(db, status)
    return {"withdrawals": withdrawals, "count": len(withdrawals)}

@router.post("/withdrawals/{withdrawal_id}/status")
async def update_withdrawal_status(
    withdrawal_id: str,
    req: WithdrawalStatusRequest,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await withdrawal_service.update_status(
        db, withdrawal_id, req.status, transaction_ref=req.transaction_ref, actor_id=admin.subject,
    )

@router.post("/referrals/{referral_id}/paid")
async def mark_referral_paid(
    referral_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await referral_service.mark_referral_paid(db, referral_id, actor_id=admin.subject)


# ---------------------------------------------------------------------------
# Creators
# ---------------------------------------------------------------------------

@router.post("/creators/{creator_id}/status")
async def set_creator_status(
    creator_id: str,
    req: CreatorStatusRequest,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    try:
        return await creator_service.set_status(db, creator_id, req.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.get("/creators/{creator_id}/ledger-check")
async def verify_creator_ledger(
    creator_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await ledger_service.verify_creator_ledger(db, creator_id)


# ---------------------------------------------------------------------------
# Analytics and outbox
# ---------------------------------------------------------------------------

@router.get("/analytics")
async def get_platform_analytics(
    period: str,
    period_type: str = Query("monthly", pattern="^(daily|monthly)$"),
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await analytics_service.get_platform_totals(db, period_type=period_type, period=period)

@router.post("/analytics/reconcile/{month}")
async def reconcile_month(
    month: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    """Rebuild one month's monthly buckets from its daily buckets."""
    try:
        return await analytics_service.reconcile_month(db, month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.get("/outbox")
async def get_outbox_stats(
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return await outbox_service.get_stats(db)

@router.get("/outbox/dead")
async def list_dead_letters(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    return {"events": await outbox_service.list_dead_letters(db, limit)}

@router.post("/outbox/{event_id}/retry")
async def retry_dead_letter(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    try:
        return await outbox_service.retry_dead_letter(db, event_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
