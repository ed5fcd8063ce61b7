from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import ledger_service

router = APIRouter(prefix="/earnings", tags=["earnings"])


@router.get("")
async def list_my_earnings(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    earnings = await ledger_service.list_earnings_by_creator(db, creator_id)
    return {"earnings": earnings, "count": len(earnings)}


@router.get("/summary")
async def get_my_earnings_summary(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Totals grouped by earning status and by earning type."""
    return await ledger_service.get_earnings_summary(db, creator_id)
