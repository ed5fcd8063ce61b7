"""Audit log query endpoints (admin only)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import Identity, require_admin
from negosyo.database import get_db
from negosyo.services import audit_service

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/events")
async def list_audit_events(
    actor_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    if actor_id:
        events = await audit_service.list_by_actor(db, actor_id, limit)
    else:
        events = await audit_service.list_recent(db, limit)
    return {"events": events, "count": len(events)}


@router.get("/events/verify")
async def verify_audit_chain(
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    return await audit_service.verify_chain(db)


@router.get("/{target_type}/{target_id}")
async def list_target_events(
    target_type: str,
    target_id: str,
    db: AsyncSession = Depends(get_db),
    _admin: Identity = Depends(require_admin),
):
    """Full history of one submission, withdrawal, referral or creator."""
    events = await audit_service.list_for_target(db, target_type, target_id)
    return {"events": events, "count": len(events)}
