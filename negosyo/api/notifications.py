from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_my_notifications(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    notifications = await notification_service.list_notifications(db, creator_id, limit)
    unread = await notification_service.unread_count(db, creator_id)
    return {"notifications": notifications, "unread": unread}


@router.get("/unread-count")
async def get_unread_count(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return {"unread": await notification_service.unread_count(db, creator_id)}


@router.post("/read-all")
async def mark_all_notifications_read(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await notification_service.mark_all_read(db, creator_id)


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    try:
        return await notification_service.mark_read(db, creator_id, notification_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
