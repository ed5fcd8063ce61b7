"""Creator withdrawal requests. Admin status changes live in ``negosyo.api.admin``."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import withdrawal_service

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


class WithdrawalRequest(BaseModel):
    amount: float = Field(..., gt=0)
    payout_method: str
    account_details: str = Field(..., min_length=1, max_length=500)


@router.post("", status_code=201)
async def create_withdrawal(
    req: WithdrawalRequest,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Request a payout. The amount leaves the balance immediately and returns if the payout fails."""
    return await withdrawal_service.create_withdrawal(
        db, creator_id, req.amount, req.payout_method, req.account_details,
    )


@router.get("")
async def list_my_withdrawals(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    withdrawals = await withdrawal_service.list_by_creator(db, creator_id)
    return {"withdrawals": withdrawals, "count": len(withdrawals)}
