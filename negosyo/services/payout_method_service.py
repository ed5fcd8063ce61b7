"""Saved payout destinations. A creator with any methods has exactly one default."""
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.exceptions import NotFoundError, ValidationError
from negosyo.models.ledger import PAYOUT_METHODS, PayoutMethod

logger = logging.getLogger(__name__)


async def _methods_for(db: AsyncSession, creator_id: str) -> list[PayoutMethod]:
    result = await db.execute(
        select(PayoutMethod)
        .where(PayoutMethod.creator_id == creator_id)
        .order_by(PayoutMethod.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _get_owned(db: AsyncSession, creator_id: str, method_id: str) -> PayoutMethod:
    result = await db.execute(
        select(PayoutMethod).where(PayoutMethod.id == method_id, PayoutMethod.creator_id == creator_id)
    )
    method = result.scalar_one_or_none()
    if not method:
        raise NotFoundError("Payout method", method_id)
    return method


async def _clear_default(db: AsyncSession, creator_id: str) -> None:
    await db.execute(
        update(PayoutMethod)
        .where(PayoutMethod.creator_id == creator_id, PayoutMethod.is_default.is_(True))
        .values(is_default=False)
    )


async def save_method(
    db: AsyncSession,
    creator_id: str,
    *,
    type: str,
    account_name: str,
    account_number: str,
    is_default: bool | None = None,
) -> dict:
    """Save a method. The first one saved becomes the default unless told otherwise."""
    if type not in PAYOUT_METHODS:
        raise ValidationError(f"type must be one of: {', '.join(PAYOUT_METHODS)}")
    existing = await _methods_for(db, creator_id)
    make_default = True if not existing else bool(is_default)
    if make_default:
        await _clear_default(db, creator_id)

    method = PayoutMethod(
        id=str(uuid.uuid4()),
        creator_id=creator_id,
        type=type,
        account_name=account_name.strip(),
        account_number=account_number.strip(),
        is_default=make_default,
    )
    db.add(method)
    await db.commit()
    await db.refresh(method)
    return _method_to_dict(method)


async def update_method(
    db: AsyncSession, creator_id: str, method_id: str, *,
    account_name: str | None = None, account_number: str | None = None,
) -> dict:
    method = await _get_owned(db, creator_id, method_id)
    if account_name is not None:
        method.account_name = account_name.strip()
    if account_number is not None:
        method.account_number = account_number.strip()
    await db.commit()
    await db.refresh(method)
    return _method_to_dict(method)


async def set_default(db: AsyncSession, creator_id: str, method_id: str) -> dict:
    await _get_owned(db, creator_id, method_id)
    await _clear_default(db, creator_id)
    await db.execute(update(PayoutMethod).where(PayoutMethod.id == method_id).values(is_default=True))
    await db.commit()
    method = await _get_owned(db, creator_id, method_id)
    await db.refresh(method)
    return _method_to_dict(method)


async def delete_method(db: AsyncSession, creator_id: str, method_id: str) -> dict:
    """Delete a method; if it was the default, the oldest remaining one takes over."""
    method = await _get_owned(db, creator_id, method_id)
    was_default = bool(method.is_default)
    await db.delete(method)
    await db.flush()

    new_default = None
    if was_default:
        remaining = await _methods_for(db, creator_id)
        if remaining:
            remaining[0].is_default = True
            new_default = remaining[0].id
    await db.commit()
    logger.info("Payout method %s deleted (creator=%s, new_default=%s)", method_id, creator_id, new_default)
    return {"deleted": method_id, "new_default": new_default}


async def list_methods(db: AsyncSession, creator_id: str) -> list[dict]:
    return [_method_to_dict(m) for m in await _methods_for(db, creator_id)]


async def get_default(db: AsyncSession, creator_id: str) -> dict | None:
    for method in await _methods_for(db, creator_id):
        if method.is_default:
            return _method_to_dict(method)
    return None


def _method_to_dict(m: PayoutMethod) -> dict:
    return {
        "id": m.id,
        "type": m.type,
        "account_name": m.account_name,
        "account_number": m.account_number,
        "is_default": bool(m.is_default),
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }
