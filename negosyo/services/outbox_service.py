"""Transactional outbox: side-effect intents recorded with the mutation, delivered later.

Producers call :func:`enqueue` inside the same session as the state change so
a rolled-back transition never emits a notification, and a committed one
always does. The dispatcher claims due events, runs the handler for their
kind, and retries failures with exponential backoff until
``outbox_max_attempts`` is exhausted, at which point the event is
dead-lettered and kept for inspection.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import settings
from negosyo.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

OUTBOX_KINDS = ("notification", "transcription", "enrichment")

# Seconds a claimed event is hidden from other dispatchers while its handler runs.
_CLAIM_LEASE_SECONDS = 60
_MAX_BACKOFF_SECONDS = 15 * 60

Handler = Callable[[AsyncSession, str, dict, httpx.AsyncClient | None], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_seconds(attempts: int) -> int:
    """Delay before the next try after ``attempts`` failures: 2, 4, 8 ... capped."""
    return min(2 ** max(attempts, 1), _MAX_BACKOFF_SECONDS)


async def enqueue(db: AsyncSession, kind: str, payload: dict) -> OutboxEvent:
    """Record a side-effect intent in the caller's transaction. The caller commits."""
    if kind not in OUTBOX_KINDS:
        raise ValueError(f"Unknown outbox kind: {kind}")
    event = OutboxEvent(kind=kind, payload=json.dumps(payload, default=str))
    db.add(event)
    await db.flush()
    return event


def _handlers() -> dict[str, Handler]:
    from negosyo.services import notification_service, submission_service, transcription_service

    return {
        "notification": notification_service.deliver,
        "transcription": transcription_service.handle_transcription_event,
        "enrichment": submission_service.push_for_enrichment,
    }


async def _claim(db: AsyncSession, event_id: str, now: datetime) -> bool:
    result = await db.execute(
        update(OutboxEvent)
        .where(
            OutboxEvent.id == event_id,
            OutboxEvent.status == "pending",
            OutboxEvent.next_attempt_at <= now,
        )
        .values(next_attempt_at=now + timedelta(seconds=_CLAIM_LEASE_SECONDS))
    )
    await db.commit()
    return result.rowcount == 1


async def _record_failure(db: AsyncSession, event_id: str, attempts: int, error: str, now: datetime) -> str:
    attempts += 1
    if attempts >= settings.outbox_max_attempts:
        values = {"status": "dead", "attempts": attempts, "last_error": error[:1000]}
        outcome = "dead"
    else:
        values = {
            "attempts": attempts,
            "last_error": error[:1000],
            "next_attempt_at": now + timedelta(seconds=backoff_seconds(attempts)),
        }
        outcome = "retry"
    await db.execute(update(OutboxEvent).where(OutboxEvent.id == event_id).values(**values))
    await db.commit()
    return outcome


async def dispatch_due(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> dict:
    """Deliver every due pending event once. Returns summary statistics."""
    now = now or _utcnow()
    limit = batch_size or settings.outbox_batch_size
    handlers = _handlers()

    result = await db.execute(
        select(OutboxEvent.id, OutboxEvent.kind, OutboxEvent.payload, OutboxEvent.attempts)
        .where(OutboxEvent.status == "pending", OutboxEvent.next_attempt_at <= now)
        .order_by(OutboxEvent.created_at.asc())
        .limit(limit)
    )
    due = result.all()

    delivered = 0
    retried = 0
    dead_lettered = 0
    for event_id, kind, payload_json, attempts in due:
        if not await _claim(db, event_id, now):
            continue
        handler = handlers.get(kind)
        try:
            if handler is None:
                raise ValueError(f"No handler for outbox kind '{kind}'")
            await handler(db, event_id, json.loads(payload_json or "{}"), http_client)
            await db.execute(
                update(OutboxEvent)
                .where(OutboxEvent.id == event_id)
                .values(status="delivered", attempts=attempts + 1, delivered_at=_utcnow(), last_error=None)
            )
            await db.commit()
            delivered += 1
        except Exception as exc:
            await db.rollback()
            outcome = await _record_failure(db, event_id, attempts, f"{type(exc).__name__}: {exc}", now)
            if outcome == "dead":
                dead_lettered += 1
                logger.warning(
                    "Outbox event %s (%s) dead-lettered after %d attempts: %s",
                    event_id, kind, attempts + 1, exc,
                )
            else:
                retried += 1
                logger.info("Outbox event %s (%s) failed, will retry: %s", event_id, kind, exc)

    if due:
        logger.debug("Outbox pass: delivered=%d retried=%d dead=%d", delivered, retried, dead_lettered)
    return {"delivered": delivered, "retried": retried, "dead_lettered": dead_lettered}


async def dispatch_pending() -> dict:
    """Periodic-loop entry point: one dispatch pass on a fresh session."""
    from negosyo.database import async_session

    async with async_session() as db:
        return await dispatch_due(db)


async def retry_dead_letter(db: AsyncSession, event_id: str) -> dict:
    """Put a dead-lettered event back in the queue with its attempt count reset."""
    result = await db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.status == "dead")
        .values(status="pending", attempts=0, next_attempt_at=_utcnow())
    )
    await db.commit()
    if result.rowcount == 0:
        raise ValueError("Outbox event not found or not dead-lettered")
    logger.info("Re-queued dead-lettered outbox event %s", event_id)
    return {"id": event_id, "status": "pending"}


async def get_stats(db: AsyncSession) -> dict:
    result = await db.execute(
        select(OutboxEvent.status, func.count(OutboxEvent.id)).group_by(OutboxEvent.status)
    )
    counts = {status: count for status, count in result.all()}
    return {
        "pending": counts.get("pending", 0),
        "delivered": counts.get("delivered", 0),
        "dead": counts.get("dead", 0),
    }


async def list_dead_letters(db: AsyncSession, limit: int = 50) -> list[dict]:
    result = await db.execute(
        select(OutboxEvent)
        .where(OutboxEvent.status == "dead")
        .order_by(OutboxEvent.created_at.desc())
        .limit(min(limit, 200))
    )
    return [
        {
            "id": e.id,
            "kind": e.kind,
            "payload": json.loads(e.payload or "{}"),
            "attempts": e.attempts,
            "last_error": e.last_error,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in result.scalars().all()
    ]
