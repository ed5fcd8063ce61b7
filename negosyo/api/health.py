import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.database import get_db
from negosyo.models.creator import Creator
from negosyo.models.outbox import OutboxEvent
from negosyo.models.submission import Submission

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_VERSION = "0.1.0"


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    creators = (await db.execute(select(func.count(Creator.id)))).scalar() or 0
    submissions = (await db.execute(select(func.count(Submission.id)))).scalar() or 0
    backlog = (
        await db.execute(select(func.count(OutboxEvent.id)).where(OutboxEvent.status == "pending"))
    ).scalar() or 0
    return {
        "status": "healthy",
        "version": _VERSION,
        "creators_count": creators,
        "submissions_count": submissions,
        "outbox_backlog": backlog,
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness check: verifies DB connectivity."""
    try:
        await db.execute(text("SELECT 1"))
        return {"status": "ready", "database": "connected"}
    except Exception:
        logger.exception("Readiness check failed: database unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "database": "unavailable"},
        )
