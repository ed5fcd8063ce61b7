from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import creator_service, referral_service

router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.get("")
async def list_my_referrals(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Everyone who signed up with this creator's code, with their referral status."""
    creator = await creator_service.get_creator(db, creator_id)
    referrals = await referral_service.list_by_referrer(db, creator_id)
    return {"referral_code": creator["referral_code"], "referrals": referrals}


@router.get("/stats")
async def get_my_referral_stats(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await referral_service.get_stats(db, creator_id)
