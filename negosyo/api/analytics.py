from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/me")
async def get_my_stats(
    period_type: str = Query("daily", pattern="^(daily|monthly)$"),
    start: Optional[str] = None,
    end: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Counters for an inclusive period range (``YYYY-MM-DD`` or ``YYYY-MM`` keys)."""
    try:
        return await analytics_service.get_creator_stats(
            db, creator_id, period_type=period_type, start=start, end=end,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
