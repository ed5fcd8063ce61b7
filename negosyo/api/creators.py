"""Creator account API endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import Identity, current_creator_id, current_identity
from negosyo.database import get_db
from negosyo.services import creator_service

router = APIRouter(prefix="/creators", tags=["creators"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CreatorSignupRequest(BaseModel):
    email: Optional[str] = Field(None, min_length=5, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    referred_by_code: Optional[str] = Field(None, max_length=20)

class CreatorUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/me")
async def ensure_my_account(
    req: CreatorSignupRequest,
    db: AsyncSession = Depends(get_db),
    identity: Identity = Depends(current_identity),
):
    """Create the creator on first appearance; returns the existing one afterwards."""
    try:
        return await creator_service.ensure_creator(
            db, identity,
            email=req.email,
            first_name=req.first_name,
            middle_name=req.middle_name,
            last_name=req.last_name,
            phone=req.phone,
            referred_by_code=req.referred_by_code,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@router.get("/me")
async def get_my_profile(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await creator_service.get_creator(db, creator_id)

@router.put("/me")
async def update_my_profile(
    req: CreatorUpdateRequest,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    updates = {k: v for k, v in req.model_dump().items() if v is not None}
    return await creator_service.update_creator(db, creator_id, updates)

@router.get("/me/wallet")
async def get_my_wallet(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Balance, lifetime earnings and lifetime withdrawals."""
    return await creator_service.get_wallet(db, creator_id)

@router.post("/me/certify")
async def certify_me(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    """Record that the creator finished training. Idempotent."""
    return await creator_service.mark_certified(db, creator_id)
