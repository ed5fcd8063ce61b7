"""Analytics service: daily and monthly dashboard counters plus nightly reconciliation.

Every counter change goes through :func:`record`, which bumps the daily and
the monthly bucket in the caller's transaction with one upsert each. The
monthly bucket therefore never depends on a rollup having run; the nightly
job only repairs drift by overwriting monthly = sum(daily).
"""

import logging
import re
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from negosyo.models.analytics import COUNTER_FIELDS, AnalyticsBucket

logger = logging.getLogger(__name__)

_UPSERT_BUILDERS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


def day_period(at: datetime) -> str:
    return at.strftime("%Y-%m-%d")


def month_period(at: datetime | date) -> str:
    return at.strftime("%Y-%m")


def _coerce(field: str, value) -> int | Decimal:
    if field not in COUNTER_FIELDS:
        raise ValueError(f"Unknown analytics counter: {field}")
    if COUNTER_FIELDS[field]:
        return Decimal(str(value))
    return int(value)


async def _upsert_increment(
    db: AsyncSession, creator_id: str, period_type: str, period: str, deltas: dict
) -> None:
    dialect = db.get_bind().dialect.name
    builder = _UPSERT_BUILDERS.get(dialect)
    if builder is None:
        raise RuntimeError(f"Analytics upsert is not supported on {dialect}")

    table = AnalyticsBucket.__table__
    now = datetime.now(timezone.utc)
    stmt = builder(table).values(
        id=str(uuid.uuid4()),
        creator_id=creator_id,
        period_type=period_type,
        period=period,
        updated_at=now,
        **deltas,
    )
    set_ = {field: table.c[field] + delta for field, delta in deltas.items()}
    set_["updated_at"] = now
    stmt = stmt.on_conflict_do_update(
        index_elements=["creator_id", "period_type", "period"],
        set_=set_,
    )
    await db.execute(stmt)


async def record(
    db: AsyncSession,
    creator_id: str,
    counters: dict,
    *,
    at: datetime | None = None,
) -> None:
    """Increment counters in both the day and the month bucket. The caller commits.

    ``counters`` maps counter names to deltas, e.g. ``{"approved_count": 1}``.
    """
    deltas = {field: _coerce(field, value) for field, value in counters.items() if value}
    if not deltas:
        return
    at = at or datetime.now(timezone.utc)
    await _upsert_increment(db, creator_id, "daily", day_period(at), deltas)
    await _upsert_increment(db, creator_id, "monthly", month_period(at), deltas)


def _bucket_to_dict(bucket: AnalyticsBucket) -> dict:
    data = {
        "period_type": bucket.period_type,
        "period": bucket.period,
    }
    for field, is_money in COUNTER_FIELDS.items():
        value = getattr(bucket, field) or 0
        data[field] = float(value) if is_money else int(value)
    return data


async def get_creator_stats(
    db: AsyncSession,
    creator_id: str,
    *,
    period_type: str = "daily",
    start: str | None = None,
    end: str | None = None,
) -> dict:
    """Buckets for one creator over an inclusive period range, plus their totals."""
    if period_type not in ("daily", "monthly"):
        raise ValueError("period_type must be 'daily' or 'monthly'")
    query = select(AnalyticsBucket).where(
        AnalyticsBucket.creator_id == creator_id,
        AnalyticsBucket.period_type == period_type,
    )
    if start:
        query = query.where(AnalyticsBucket.period >= start)
    if end:
        query = query.where(AnalyticsBucket.period <= end)
    result = await db.execute(
        query.order_by(AnalyticsBucket.period.asc()).execution_options(populate_existing=True)
    )
    buckets = [_bucket_to_dict(b) for b in result.scalars().all()]

    totals = {field: 0 for field in COUNTER_FIELDS}
    for bucket in buckets:
        for field in COUNTER_FIELDS:
            totals[field] += bucket[field]
    return {"creator_id": creator_id, "period_type": period_type, "buckets": buckets, "totals": totals}


async def get_platform_totals(db: AsyncSession, *, period_type: str, period: str) -> dict:
    """Sum of every creator's bucket for one period."""
    columns = [func.coalesce(func.sum(getattr(AnalyticsBucket, f)), 0) for f in COUNTER_FIELDS]
    result = await db.execute(
        select(func.count(AnalyticsBucket.id), *columns).where(
            AnalyticsBucket.period_type == period_type,
            AnalyticsBucket.period == period,
        )
    )
    row = result.one()
    totals = {"period_type": period_type, "period": period, "active_creators": int(row[0])}
    for (field, is_money), value in zip(COUNTER_FIELDS.items(), row[1:]):
        totals[field] = float(value or 0) if is_money else int(value or 0)
    return totals


async def reconcile_month(db: AsyncSession, month: str) -> dict:
    """Overwrite every monthly bucket of ``month`` with the sum of its daily buckets.

    Idempotent. Drift is logged before it is repaired; under normal operation
    there is none because :func:`record` keeps both buckets in step.
    """
    if not re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", month):
        raise ValueError("month must be YYYY-MM")
    table = AnalyticsBucket.__table__
    daily = table.alias("daily")
    day_prefix = f"{month}-%"

    sums = await db.execute(
        select(daily.c.creator_id, *[func.sum(daily.c[f]).label(f) for f in COUNTER_FIELDS])
        .where(daily.c.period_type == "daily", daily.c.period.like(day_prefix))
        .group_by(daily.c.creator_id)
    )
    expected = {row.creator_id: row for row in sums.all()}

    monthly = await db.execute(
        select(AnalyticsBucket).where(
            AnalyticsBucket.period_type == "monthly", AnalyticsBucket.period == month
        ).execution_options(populate_existing=True)
    )
    existing = {b.creator_id: b for b in monthly.scalars().all()}

    drifted = 0
    for creator_id in set(expected) | set(existing):
        row = expected.get(creator_id)
        bucket = existing.get(creator_id)
        for field in COUNTER_FIELDS:
            want = getattr(row, field) if row is not None else 0
            have = getattr(bucket, field) if bucket is not None else 0
            if Decimal(str(want or 0)) != Decimal(str(have or 0)):
                drifted += 1
                logger.warning(
                    "Analytics drift for creator %s in %s: %s monthly=%s daily_sum=%s",
                    creator_id, month, field, have, want,
                )
                break
        if bucket is None:
            # Seed an empty bucket; the overwrite below fills it.
            await _upsert_increment(db, creator_id, "monthly", month, {"submissions_count": 0})

    await db.execute(
        update(table)
        .where(table.c.period_type == "monthly", table.c.period == month)
        .values({
            field: select(func.coalesce(func.sum(daily.c[field]), 0))
            .where(
                daily.c.creator_id == table.c.creator_id,
                daily.c.period_type == "daily",
                daily.c.period.like(day_prefix),
            )
            .scalar_subquery()
            for field in COUNTER_FIELDS
        })
    )
    await db.commit()
    db.expire_all()

    if drifted:
        logger.info("Reconciled %s: repaired %d monthly bucket(s)", month, drifted)
    return {"month": month, "buckets_checked": len(set(expected) | set(existing)), "drift_repaired": drifted}


async def reconcile_recent_months(now: datetime | None = None) -> list[dict]:
    """Nightly job: reconcile the current and the previous month on a fresh session."""
    from negosyo.database import async_session

    now = now or datetime.now(timezone.utc)
    first_of_month = now.date().replace(day=1)
    if first_of_month.month == 1:
        previous = date(first_of_month.year - 1, 12, 1)
    else:
        previous = first_of_month.replace(month=first_of_month.month - 1)

    results = []
    async with async_session() as db:
        for month in (month_period(previous), month_period(first_of_month)):
            results.append(await reconcile_month(db, month))
    return results
