"""Creator account management: first-appearance registration, profile, wallet."""
import logging
import secrets
import string
import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.exceptions import CreatorNotFoundError
from negosyo.core.identity import Identity
from negosyo.models.creator import Creator

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_SUFFIX_LENGTH = 6


def generate_referral_code(first_name: str | None, last_name: str | None) -> str:
    """Two letters of the first name, one of the last name, six random base-36 chars."""
    first = "".join(c for c in (first_name or "") if c.isalpha())[:2]
    last = "".join(c for c in (last_name or "") if c.isalpha())[:1]
    prefix = (first + last).upper() or "NG"
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_SUFFIX_LENGTH))
    return prefix + suffix


async def get_creator_model(db: AsyncSession, creator_id: str) -> Creator:
    result = await db.execute(select(Creator).where(Creator.id == creator_id))
    creator = result.scalar_one_or_none()
    if not creator:
        raise CreatorNotFoundError(creator_id)
    return creator


async def find_by_identity(db: AsyncSession, identity_ref: str) -> Creator | None:
    result = await db.execute(select(Creator).where(Creator.identity_ref == identity_ref))
    return result.scalar_one_or_none()


async def ensure_creator(
    db: AsyncSession,
    identity: Identity,
    *,
    email: str | None = None,
    first_name: str | None = None,
    middle_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    referred_by_code: str | None = None,
) -> dict:
    """Return the creator for this identity, creating it on first appearance.

    A ``referred_by_code`` is only honored when the account is created; an
    existing creator keeps whatever referral it already has.
    """
    existing = await find_by_identity(db, identity.subject)
    if existing:
        return _creator_to_dict(existing)

    resolved_email = (email or identity.email or "").lower().strip()
    if not resolved_email:
        raise ValueError("Email is required to register a creator")

    creator = Creator(
        id=str(uuid.uuid4()),
        identity_ref=identity.subject,
        email=resolved_email,
        first_name=first_name.strip() if first_name else None,
        middle_name=middle_name.strip() if middle_name else None,
        last_name=last_name.strip() if last_name else None,
        phone=phone,
        referral_code=generate_referral_code(first_name, last_name),
        role="admin" if identity.is_admin else "creator",
        last_active_at=datetime.now(timezone.utc),
    )
    db.add(creator)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent first request for the same identity won the insert.
        await db.rollback()
        existing = await find_by_identity(db, identity.subject)
        if existing is None:
            raise
        return _creator_to_dict(existing)

    if referred_by_code:
        from negosyo.services import referral_service

        await referral_service.create_from_signup(db, creator, referred_by_code)

    await db.commit()
    await db.refresh(creator)
    logger.info("Creator registered: %s (%s)", creator.id, creator.email)
    return _creator_to_dict(creator)


async def resolve_creator_id(db: AsyncSession, identity: Identity) -> str:
    """Creator id for a signed-in identity; the creator must already exist."""
    creator = await find_by_identity(db, identity.subject)
    if not creator:
        raise CreatorNotFoundError(identity.subject)
    return creator.id


async def get_creator(db: AsyncSession, creator_id: str) -> dict:
    return _creator_to_dict(await get_creator_model(db, creator_id))


async def update_creator(db: AsyncSession, creator_id: str, updates: dict) -> dict:
    """Update creator profile fields."""
    creator = await get_creator_model(db, creator_id)

    allowed_fields = {"first_name", "middle_name", "last_name", "phone", "email"}
    for key, value in updates.items():
        if key in allowed_fields and value is not None:
            if key == "email":
                value = value.lower().strip()
            setattr(creator, key, value)

    creator.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(creator)
    return _creator_to_dict(creator)


async def mark_certified(db: AsyncSession, creator_id: str) -> dict:
    creator = await get_creator_model(db, creator_id)
    if creator.certified_at is None:
        creator.certified_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(creator)
    return _creator_to_dict(creator)


async def touch_last_active(db: AsyncSession, creator_id: str) -> None:
    await db.execute(
        update(Creator).where(Creator.id == creator_id).values(last_active_at=datetime.now(timezone.utc))
    )
    await db.commit()


async def get_wallet(db: AsyncSession, creator_id: str) -> dict:
    result = await db.execute(
        select(Creator.balance, Creator.total_earnings, Creator.total_withdrawn)
        .where(Creator.id == creator_id)
    )
    row = result.one_or_none()
    if row is None:
        raise CreatorNotFoundError(creator_id)
    return {
        "creator_id": creator_id,
        "balance": float(row.balance or 0),
        "total_earnings": float(row.total_earnings or 0),
        "total_withdrawn": float(row.total_withdrawn or 0),
    }


async def set_status(db: AsyncSession, creator_id: str, status: str) -> dict:
    """Admin: deactivate or reactivate. Creators are never deleted."""
    if status not in ("active", "deactivated"):
        raise ValueError("status must be 'active' or 'deactivated'")
    creator = await get_creator_model(db, creator_id)
    creator.status = status
    await db.commit()
    await db.refresh(creator)
    logger.info("Creator %s status -> %s", creator_id, status)
    return _creator_to_dict(creator)


def _creator_to_dict(c: Creator) -> dict:
    return {
        "id": c.id,
        "email": c.email,
        "first_name": c.first_name,
        "middle_name": c.middle_name,
        "last_name": c.last_name,
        "phone": c.phone,
        "referral_code": c.referral_code,
        "balance": float(c.balance or 0),
        "total_earnings": float(c.total_earnings or 0),
        "total_withdrawn": float(c.total_withdrawn or 0),
        "role": c.role,
        "status": c.status,
        "submission_count": c.submission_count or 0,
        "certified_at": c.certified_at.isoformat() if c.certified_at else None,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }
