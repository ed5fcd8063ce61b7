from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.identity import current_creator_id
from negosyo.database import get_db
from negosyo.services import payout_method_service

router = APIRouter(prefix="/payout-methods", tags=["payout-methods"])


class PayoutMethodRequest(BaseModel):
    type: str
    account_name: str = Field(..., min_length=1, max_length=200)
    account_number: str = Field(..., min_length=1, max_length=100)
    is_default: Optional[bool] = None

class PayoutMethodUpdate(BaseModel):
    account_name: Optional[str] = Field(None, min_length=1, max_length=200)
    account_number: Optional[str] = Field(None, min_length=1, max_length=100)


@router.get("")
async def list_payout_methods(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return {"methods": await payout_method_service.list_methods(db, creator_id)}


@router.get("/default")
async def get_default_payout_method(
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return {"method": await payout_method_service.get_default(db, creator_id)}


@router.post("", status_code=201)
async def save_payout_method(
    req: PayoutMethodRequest,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await payout_method_service.save_method(
        db, creator_id,
        type=req.type, account_name=req.account_name, account_number=req.account_number,
        is_default=req.is_default,
    )


@router.patch("/{method_id}")
async def update_payout_method(
    method_id: str,
    req: PayoutMethodUpdate,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await payout_method_service.update_method(
        db, creator_id, method_id, account_name=req.account_name, account_number=req.account_number,
    )


@router.post("/{method_id}/default")
async def set_default_payout_method(
    method_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await payout_method_service.set_default(db, creator_id, method_id)


@router.delete("/{method_id}")
async def delete_payout_method(
    method_id: str,
    db: AsyncSession = Depends(get_db),
    creator_id: str = Depends(current_creator_id),
):
    return await payout_method_service.delete_method(db, creator_id, method_id)
