"""Notification sink: producers enqueue intents, the outbox delivers them to the inbox and webhook."""

import json
import logging

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.config import settings
from negosyo.models.outbox import Notification, OutboxEvent
from negosyo.services import outbox_service

logger = logging.getLogger(__name__)


async def notify(
    db: AsyncSession,
    creator_id: str,
    type: str,
    title: str,
    body: str,
    data: dict | None = None,
) -> OutboxEvent:
    """Queue a notification in the caller's transaction."""
    return await outbox_service.enqueue(
        db,
        "notification",
        {"creator_id": creator_id, "type": type, "title": title, "body": body, "data": data or {}},
    )


async def deliver(
    db: AsyncSession,
    event_id: str,
    payload: dict,
    http_client: httpx.AsyncClient | None = None,
) -> Notification:
    """Outbox handler. Re-delivery of the same event reuses the existing inbox row."""
    existing = await db.execute(select(Notification).where(Notification.outbox_event_id == event_id))
    notification = existing.scalar_one_or_none()
    if notification is None:
        notification = Notification(
            outbox_event_id=event_id,
            creator_id=payload["creator_id"],
            type=payload["type"],
            title=payload["title"],
            body=payload["body"],
            data=json.dumps(payload.get("data") or {}, default=str),
        )
        db.add(notification)
        try:
            await db.flush()
        except IntegrityError:
            # Another dispatcher inserted it first.
            await db.rollback()
            existing = await db.execute(select(Notification).where(Notification.outbox_event_id == event_id))
            notification = existing.scalar_one()

    if settings.notification_webhook_url:
        await _post_webhook(payload, event_id, http_client)
    return notification


async def _post_webhook(payload: dict, event_id: str, http_client: httpx.AsyncClient | None) -> None:
    body = {"event_id": event_id, **payload}
    headers = {"X-Negosyo-Event-Id": event_id}
    timeout = settings.notification_webhook_timeout_seconds
    if http_client is not None:
        response = await http_client.post(settings.notification_webhook_url, json=body, headers=headers, timeout=timeout)
    else:
        async with httpx.AsyncClient() as client:
            response = await client.post(settings.notification_webhook_url, json=body, headers=headers, timeout=timeout)
    if not 200 <= response.status_code < 300:
        raise RuntimeError(f"Notification webhook returned HTTP {response.status_code}")


async def list_notifications(db: AsyncSession, creator_id: str, limit: int = 50) -> list[dict]:
    result = await db.execute(
        select(Notification)
        .where(Notification.creator_id == creator_id)
        .order_by(Notification.sent_at.desc())
        .limit(min(limit, 200))
    )
    return [_notification_to_dict(n) for n in result.scalars().all()]


async def unread_count(db: AsyncSession, creator_id: str) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.creator_id == creator_id, Notification.read.is_(False)
        )
    )
    return int(result.scalar() or 0)


async def mark_read(db: AsyncSession, creator_id: str, notification_id: str) -> dict:
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.creator_id == creator_id)
        .values(read=True)
    )
    await db.commit()
    if result.rowcount == 0:
        raise ValueError("Notification not found")
    return {"id": notification_id, "read": True}


async def mark_all_read(db: AsyncSession, creator_id: str) -> dict:
    result = await db.execute(
        update(Notification)
        .where(Notification.creator_id == creator_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.commit()
    return {"marked": result.rowcount}


def _notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "body": n.body,
        "data": json.loads(n.data or "{}"),
        "read": bool(n.read),
        "sent_at": n.sent_at.isoformat() if n.sent_at else None,
    }
