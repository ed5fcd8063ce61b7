"""Withdrawal service -- reserve balance on request, commit or release on admin outcome."""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import settings
from negosyo.core.exceptions import InvalidTransitionError, ValidationError, WithdrawalNotFoundError
from negosyo.models.creator import Creator
from negosyo.models.ledger import PAYOUT_METHODS, Withdrawal
from negosyo.services import audit_service, notification_service
from negosyo.services.ledger_service import debit_creator

logger = logging.getLogger(__name__)

# target -> statuses it may be entered from
WITHDRAWAL_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "processing": ("pending",),
    "completed": ("pending", "processing"),
    "failed": ("pending", "processing"),
}


async def create_withdrawal(
    db: AsyncSession,
    creator_id: str,
    amount: float,
    payout_method: str,
    account_details: str,
) -> dict:
    """Reserve ``amount`` from the creator's balance and open a pending withdrawal."""
    if payout_method not in PAYOUT_METHODS:
        raise ValidationError(f"payout_method must be one of: {', '.join(PAYOUT_METHODS)}")
    if not account_details or not account_details.strip():
        raise ValidationError("account_details is required")

    amount_d = Decimal(str(amount)).quantize(Decimal("0.01"))
    minimum = Decimal(str(settings.min_withdrawal_amount))
    if amount_d < minimum:
        raise ValidationError(f"Minimum withdrawal amount is PHP {minimum:,.2f}")

    if not await debit_creator(db, creator_id, amount_d):
        await db.rollback()
        balance = await db.execute(select(Creator.balance).where(Creator.id == creator_id))
        current = balance.scalar_one_or_none()
        if current is None:
            raise ValidationError("Creator not found")
        raise ValidationError(f"Insufficient balance: PHP {float(current):,.2f} (need PHP {amount_d:,.2f})")

    withdrawal = Withdrawal(
        id=str(uuid.uuid4()),
        creator_id=creator_id,
        amount=amount_d,
        payout_method=payout_method,
        account_details=account_details.strip(),
        status="pending",
        reservation_status="reserved",
    )
    db.add(withdrawal)
    await db.flush()
    await audit_service.log_event(
        db, "withdrawal.requested", target_type="withdrawal", target_id=withdrawal.id,
        actor_id=creator_id, details={"amount": str(amount_d), "payout_method": payout_method},
    )
    await db.commit()
    await db.refresh(withdrawal)

    logger.info(
        "Withdrawal created: %s PHP %.2f -> %s (creator=%s)",
        withdrawal.id, float(amount_d), payout_method, creator_id,
    )
    return _withdrawal_to_dict(withdrawal)


async def _get_withdrawal(db: AsyncSession, withdrawal_id: str) -> Withdrawal:
    result = await db.execute(
        select(Withdrawal).where(Withdrawal.id == withdrawal_id).execution_options(populate_existing=True)
    )
    withdrawal = result.scalar_one_or_none()
    if not withdrawal:
        raise WithdrawalNotFoundError(withdrawal_id)
    return withdrawal


async def update_status(
    db: AsyncSession,
    withdrawal_id: str,
    status: str,
    *,
    transaction_ref: str | None = None,
    actor_id: str | None = None,
) -> dict:
    """Admin: move a withdrawal forward. ``failed`` releases the reservation, ``completed`` commits it.

    The status change is a compare-and-swap, so the release or commit
    happens at most once however many times the admin clicks.
    """
    if status not in WITHDRAWAL_TRANSITIONS:
        raise ValidationError(f"status must be one of: {', '.join(WITHDRAWAL_TRANSITIONS)}")
    withdrawal = await _get_withdrawal(db, withdrawal_id)
    sources = WITHDRAWAL_TRANSITIONS[status]
    now = datetime.now(timezone.utc)

    values: dict = {"status": status}
    if status in ("completed", "failed"):
        values["processed_at"] = now
        values["reservation_status"] = "committed" if status == "completed" else "released"
    if transaction_ref:
        values["transaction_ref"] = transaction_ref

    result = await db.execute(
        update(Withdrawal)
        .where(
            Withdrawal.id == withdrawal_id,
            Withdrawal.status.in_(sources),
            Withdrawal.reservation_status == "reserved",
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await _get_withdrawal(db, withdrawal_id)
        raise InvalidTransitionError("Withdrawal", current.status, status)

    amount = Decimal(str(withdrawal.amount))
    if status == "failed":
        await db.execute(
            update(Creator)
            .where(Creator.id == withdrawal.creator_id)
            .values(balance=Creator.balance + amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await notification_service.notify(
            db, withdrawal.creator_id, "payout_failed", "Withdrawal Failed",
            f"Your withdrawal of PHP {amount:,.2f} could not be processed. The amount was returned to your balance.",
            {"withdrawal_id": withdrawal_id, "amount": float(amount)},
        )
    elif status == "completed":
        await db.execute(
            update(Creator)
            .where(Creator.id == withdrawal.creator_id)
            .values(total_withdrawn=Creator.total_withdrawn + amount, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await notification_service.notify(
            db, withdrawal.creator_id, "payout_sent", "Withdrawal Completed!",
            f"Your withdrawal of PHP {amount:,.2f} via {withdrawal.payout_method.upper()} has been processed.",
            {"withdrawal_id": withdrawal_id, "amount": float(amount)},
        )

    await audit_service.log_event(
        db, f"withdrawal.{status}", target_type="withdrawal", target_id=withdrawal_id, actor_id=actor_id,
        details={
            "amount": str(amount),
            "payout_method": withdrawal.payout_method,
            "creator_id": withdrawal.creator_id,
            "transaction_ref": transaction_ref,
        },
    )
    await db.commit()
    logger.info("Withdrawal %s -> %s (actor=%s)", withdrawal_id, status, actor_id)
    return _withdrawal_to_dict(await _get_withdrawal(db, withdrawal_id))


async def list_by_creator(db: AsyncSession, creator_id: str) -> list[dict]:
    result = await db.execute(
        select(Withdrawal).where(Withdrawal.creator_id == creator_id).order_by(Withdrawal.created_at.desc())
    )
    return [_withdrawal_to_dict(w) for w in result.scalars().all()]


async def list_withdrawals(db: AsyncSession, status: str | None = None) -> list[dict]:
    """Admin view, newest first, with the requesting creator's name."""
    query = select(Withdrawal, Creator).join(Creator, Creator.id == Withdrawal.creator_id)
    if status:
        query = query.where(Withdrawal.status == status)
    result = await db.execute(query.order_by(Withdrawal.created_at.desc()))
    items = []
    for withdrawal, creator in result.all():
        data = _withdrawal_to_dict(withdrawal)
        data["creator_name"] = f"{creator.first_name or ''} {creator.last_name or ''}".strip() or creator.email
        data["creator_email"] = creator.email
        items.append(data)
    return items


def _withdrawal_to_dict(w: Withdrawal) -> dict:
    return {
        "id": w.id,
        "creator_id": w.creator_id,
        "amount": float(w.amount),
        "payout_method": w.payout_method,
        "account_details": w.account_details,
        "status": w.status,
        "reservation_status": w.reservation_status,
        "transaction_ref": w.transaction_ref,
        "created_at": w.created_at.isoformat() if w.created_at else None,
        "processed_at": w.processed_at.isoformat() if w.processed_at else None,
    }
