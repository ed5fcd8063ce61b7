"""Immutable audit logging with SHA-256 hash chain."""

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.core.hashing import compute_audit_hash
from negosyo.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_event(
    db: AsyncSession,
    action: str,
    *,
    target_type: str,
    target_id: str,
    actor_id: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    """Append an audit entry to the caller's transaction. The caller commits."""
    latest = await db.execute(
        select(AuditLog.entry_hash).order_by(AuditLog.created_at.desc()).limit(1)
    )
    prev_hash = latest.scalar_one_or_none()

    created_at = datetime.now(timezone.utc)
    details_json = json.dumps(details or {}, sort_keys=True, default=str)

    entry_hash = compute_audit_hash(
        prev_hash, action, actor_id, target_type, target_id, details_json, created_at.isoformat(),
    )

    entry = AuditLog(
        action=action,
        actor_id=actor_id,
        target_type=target_type,
        target_id=target_id,
        details=details_json,
        prev_hash=prev_hash,
        entry_hash=entry_hash,
        created_at=created_at,
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_for_target(db: AsyncSession, target_type: str, target_id: str) -> list[dict]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.target_type == target_type, AuditLog.target_id == target_id)
        .order_by(AuditLog.created_at.asc())
    )
    return [_entry_to_dict(e) for e in result.scalars().all()]


async def list_recent(db: AsyncSession, limit: int = 50) -> list[dict]:
    result = await db.execute(
        select(AuditLog).order_by(AuditLog.created_at.desc()).limit(min(limit, 200))
    )
    return [_entry_to_dict(e) for e in result.scalars().all()]


async def list_by_actor(db: AsyncSession, actor_id: str, limit: int = 50) -> list[dict]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.actor_id == actor_id)
        .order_by(AuditLog.created_at.desc())
        .limit(min(limit, 200))
    )
    return [_entry_to_dict(e) for e in result.scalars().all()]


async def verify_chain(db: AsyncSession) -> dict:
    """Walk the chain oldest-first and recompute every hash.

    Returns the first broken entry id, if any, so an operator can see where
    the log was tampered with.
    """
    result = await db.execute(select(AuditLog).order_by(AuditLog.created_at.asc()))
    prev_hash = None
    checked = 0
    for entry in result.scalars().all():
        created_at = entry.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        expected = compute_audit_hash(
            prev_hash, entry.action, entry.actor_id, entry.target_type,
            entry.target_id, entry.details or "{}", created_at.isoformat(),
        )
        if entry.prev_hash != prev_hash or entry.entry_hash != expected:
            logger.warning("Audit chain broken at entry %s", entry.id)
            return {"valid": False, "checked": checked, "broken_at": entry.id}
        prev_hash = entry.entry_hash
        checked += 1
    return {"valid": True, "checked": checked, "broken_at": None}


def _entry_to_dict(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "action": entry.action,
        "actor_id": entry.actor_id,
        "target_type": entry.target_type,
        "target_id": entry.target_id,
        "details": json.loads(entry.details or "{}"),
        "entry_hash": entry.entry_hash,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
