"""Ledger settlement: crediting creators when a submission is paid, and earnings queries.

Balances only move through single-statement conditional UPDATEs
(``balance = balance + x`` / ``... WHERE balance >= x``) so concurrent
settlements and withdrawals never lose an update.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import settings
from negosyo.core.exceptions import CreatorNotFoundError
from negosyo.models.creator import Creator
from negosyo.models.ledger import Earning
from negosyo.models.submission import Submission, SubmissionStatus
from negosyo.services import analytics_service, audit_service, notification_service, referral_service
from negosyo.services.submission_service import (
    compare_and_set_status,
    get_submission_model,
    submission_to_dict,
)

logger = logging.getLogger(__name__)


def _to_decimal(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


async def credit_creator(db: AsyncSession, creator_id: str, amount: Decimal) -> None:
    """Atomically add ``amount`` to balance and lifetime earnings. Does not commit."""
    result = await db.execute(
        update(Creator)
        .where(Creator.id == creator_id)
        .values(
            balance=Creator.balance + amount,
            total_earnings=Creator.total_earnings + amount,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CreatorNotFoundError(creator_id)


async def debit_creator(db: AsyncSession, creator_id: str, amount: Decimal) -> bool:
    """Atomically subtract ``amount`` if the balance covers it. Does not commit.

    Returns False instead of overdrawing; two racing debits can never both
    succeed against a balance that only covers one.
    """
    result = await db.execute(
        update(Creator)
        .where(Creator.id == creator_id, Creator.balance >= amount)
        .values(balance=Creator.balance - amount, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def append_earning(
    db: AsyncSession, creator_id: str, submission_id: str, amount: Decimal, earning_type: str
) -> Earning:
    earning = Earning(
        id=str(uuid.uuid4()),
        creator_id=creator_id,
        submission_id=submission_id,
        amount=amount,
        type=earning_type,
        status="available",
    )
    db.add(earning)
    await db.flush()
    return earning


async def mark_paid(db: AsyncSession, submission_id: str, *, actor_id: str | None = None) -> dict:
    """Settle a deployed submission: deployed -> paid, credit the creator, maybe pay a referral bonus.

    The status compare-and-swap is the idempotency key: a second call (or a
    concurrent one) finds the submission no longer ``deployed`` and fails
    with InvalidTransitionError before touching any balance.
    """
    submission = await get_submission_model(db, submission_id, refresh=True)
    now = datetime.now(timezone.utc)

    # Credit exactly the payout read above; an override landing in between raises ConcurrencyError.
    if submission.creator_payout is None:
        payout_unchanged = Submission.creator_payout.is_(None)
    else:
        payout_unchanged = Submission.creator_payout == submission.creator_payout
    await compare_and_set_status(
        db, submission_id, SubmissionStatus.PAID,
        extra_conditions=(payout_unchanged,), values={"paid_at": now},
    )

    creator_id = submission.creator_id
    payout = _to_decimal(submission.creator_payout)
    if payout > 0:
        await credit_creator(db, creator_id, payout)
        await append_earning(db, creator_id, submission_id, payout, "submission_approved")
        await analytics_service.record(db, creator_id, {"earnings_total": payout}, at=now)
        await notification_service.notify(
            db, creator_id, "payout_sent", "Payment Received",
            f"PHP {payout:,.2f} for {submission.business_name} has been added to your balance.",
            {"submission_id": submission_id, "amount": float(payout)},
        )

    bonus = _to_decimal(settings.referral_bonus_amount)
    referral = await referral_service.qualify(db, creator_id, submission_id, bonus) if bonus > 0 else None
    if referral is not None:
        await credit_creator(db, referral.referrer_id, bonus)
        await append_earning(db, referral.referrer_id, submission_id, bonus, "referral_bonus")
        await analytics_service.record(
            db, referral.referrer_id, {"earnings_total": bonus, "referrals_count": 1}, at=now,
        )
        await notification_service.notify(
            db, referral.referrer_id, "payout_sent", "Referral Bonus Earned!",
            f"You earned PHP {bonus:,.2f} from a referral bonus.",
            {"referral_id": referral.id, "amount": float(bonus)},
        )
        await audit_service.log_event(
            db, "referral.qualified", target_type="referral", target_id=referral.id,
            actor_id=actor_id, details={"submission_id": submission_id, "bonus": str(bonus)},
        )

    await audit_service.log_event(
        db, "submission.paid", target_type="submission", target_id=submission_id,
        actor_id=actor_id, details={"payout": str(payout), "referral_id": referral.id if referral else None},
    )
    await db.commit()
    logger.info(
        "Submission %s paid: creator=%s payout=%s referral_bonus=%s",
        submission_id, creator_id, payout, bonus if referral else 0,
    )
    refreshed = await get_submission_model(db, submission_id, refresh=True)
    return submission_to_dict(refreshed)


async def list_earnings_by_creator(db: AsyncSession, creator_id: str) -> list[dict]:
    result = await db.execute(
        select(Earning, Submission.business_name)
        .join(Submission, Submission.id == Earning.submission_id)
        .where(Earning.creator_id == creator_id)
        .order_by(Earning.created_at.desc())
    )
    items = []
    for earning, business_name in result.all():
        data = _earning_to_dict(earning)
        data["business_name"] = business_name
        items.append(data)
    return items


async def list_earnings_by_submission(db: AsyncSession, submission_id: str) -> list[dict]:
    result = await db.execute(
        select(Earning).where(Earning.submission_id == submission_id).order_by(Earning.created_at.asc())
    )
    return [_earning_to_dict(e) for e in result.scalars().all()]


async def get_earnings_summary(db: AsyncSession, creator_id: str) -> dict:
    result = await db.execute(
        select(Earning.status, Earning.type, func.coalesce(func.sum(Earning.amount), 0))
        .where(Earning.creator_id == creator_id)
        .group_by(Earning.status, Earning.type)
    )
    summary = {
        "total": 0.0,
        "by_status": {"pending": 0.0, "available": 0.0, "withdrawn": 0.0},
        "by_type": {"submission_approved": 0.0, "referral_bonus": 0.0, "lead_bonus": 0.0},
    }
    for status, earning_type, amount in result.all():
        value = float(amount or 0)
        summary["total"] += value
        summary["by_status"][status] = summary["by_status"].get(status, 0.0) + value
        summary["by_type"][earning_type] = summary["by_type"].get(earning_type, 0.0) + value
    return summary


async def verify_creator_ledger(db: AsyncSession, creator_id: str) -> dict:
    """Compare lifetime earnings against the sum of the creator's earning rows."""
    creator = await db.execute(
        select(Creator.total_earnings).where(Creator.id == creator_id).execution_options(populate_existing=True)
    )
    total_earnings = creator.scalar_one_or_none()
    if total_earnings is None:
        raise CreatorNotFoundError(creator_id)
    result = await db.execute(
        select(func.coalesce(func.sum(Earning.amount), 0)).where(Earning.creator_id == creator_id)
    )
    earned = _to_decimal(result.scalar())
    consistent = _to_decimal(total_earnings) == earned
    if not consistent:
        logger.warning("Ledger mismatch for creator %s: total_earnings=%s earnings_sum=%s",
                       creator_id, total_earnings, earned)
    return {"creator_id": creator_id, "total_earnings": float(total_earnings), "earnings_sum": float(earned),
            "consistent": consistent}


def _earning_to_dict(e: Earning) -> dict:
    return {
        "id": e.id,
        "creator_id": e.creator_id,
        "submission_id": e.submission_id,
        "amount": float(e.amount),
        "type": e.type,
        "status": e.status,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }
