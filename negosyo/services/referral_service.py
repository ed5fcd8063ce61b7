"""Referral links between creators and their one-time qualification."""
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.exceptions import InvalidTransitionError, NotFoundError
from negosyo.models.creator import Creator
from negosyo.models.ledger import Referral
from negosyo.services import audit_service

logger = logging.getLogger(__name__)


async def create_from_signup(db: AsyncSession, referred: Creator, referral_code: str) -> Referral | None:
    """Link a newly registered creator to whoever owns ``referral_code``.

    At most one referral per referred creator; a second call returns the
    existing link. Self-referral is ignored. The caller commits.
    """
    code = referral_code.strip().upper()
    result = await db.execute(select(Creator).where(Creator.referral_code == code))
    referrer = result.scalar_one_or_none()
    if referrer is None:
        raise ValueError(f"Unknown referral code: {code}")
    if referrer.id == referred.id:
        logger.info("Ignoring self-referral for creator %s", referred.id)
        return None

    existing = await db.execute(select(Referral).where(Referral.referred_id == referred.id))
    referral = existing.scalar_one_or_none()
    if referral:
        return referral

    referral = Referral(
        referrer_id=referrer.id,
        referred_id=referred.id,
        referral_code=code,
        status="pending",
    )
    db.add(referral)
    await db.flush()
    logger.info("Referral created: %s referred %s", referrer.id, referred.id)
    return referral


async def qualify(
    db: AsyncSession,
    referred_id: str,
    submission_id: str,
    bonus_amount: Decimal,
) -> Referral | None:
    """Compare-and-swap the referral of ``referred_id`` from pending to qualified.

    Returns the referral only to the caller whose update won; every other
    caller (already qualified, no referral, or a lost race) gets ``None``.
    Does not commit.
    """
    result = await db.execute(
        update(Referral)
        .where(Referral.referred_id == referred_id, Referral.status == "pending")
        .values(
            status="qualified",
            bonus_amount=bonus_amount,
            qualifying_submission_id=submission_id,
            qualified_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    won = await db.execute(
        select(Referral).where(Referral.referred_id == referred_id).execution_options(populate_existing=True)
    )
    return won.scalar_one()


async def mark_referral_paid(db: AsyncSession, referral_id: str, *, actor_id: str | None = None) -> dict:
    """Admin: qualified -> paid."""
    result = await db.execute(
        update(Referral)
        .where(Referral.id == referral_id, Referral.status == "qualified")
        .values(status="paid", paid_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await db.execute(select(Referral.status).where(Referral.id == referral_id))
        status = current.scalar_one_or_none()
        if status is None:
            raise NotFoundError("Referral", referral_id)
        raise InvalidTransitionError("Referral", status, "paid")

    await audit_service.log_event(
        db, "referral.paid", target_type="referral", target_id=referral_id, actor_id=actor_id,
    )
    await db.commit()
    referral = await db.execute(
        select(Referral).where(Referral.id == referral_id).execution_options(populate_existing=True)
    )
    return _referral_to_dict(referral.scalar_one())


async def list_by_referrer(db: AsyncSession, referrer_id: str) -> list[dict]:
    result = await db.execute(
        select(Referral, Creator)
        .join(Creator, Creator.id == Referral.referred_id)
        .where(Referral.referrer_id == referrer_id)
        .order_by(Referral.created_at.desc())
    )
    items = []
    for referral, referred in result.all():
        data = _referral_to_dict(referral)
        name = f"{referred.first_name or ''} {referred.last_name or ''}".strip()
        data["referred_name"] = name or referred.email
        items.append(data)
    return items


async def get_stats(db: AsyncSession, referrer_id: str) -> dict:
    result = await db.execute(
        select(Referral.status, func.count(Referral.id), func.coalesce(func.sum(Referral.bonus_amount), 0))
        .where(Referral.referrer_id == referrer_id)
        .group_by(Referral.status)
    )
    stats = {"total": 0, "pending": 0, "qualified": 0, "paid": 0, "total_earned": 0.0}
    for status, count, earned in result.all():
        stats[status] = count
        stats["total"] += count
        stats["total_earned"] += float(earned or 0)
    return stats


def _referral_to_dict(r: Referral) -> dict:
    return {
        "id": r.id,
        "referrer_id": r.referrer_id,
        "referred_id": r.referred_id,
        "referral_code": r.referral_code,
        "status": r.status,
        "bonus_amount": float(r.bonus_amount) if r.bonus_amount is not None else None,
        "qualifying_submission_id": r.qualifying_submission_id,
        "qualified_at": r.qualified_at.isoformat() if r.qualified_at else None,
        "paid_at": r.paid_at.isoformat() if r.paid_at else None,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }
