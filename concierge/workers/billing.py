"""
Grace-period sweep. Scheduled hourly via celery beat.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.subscription import enforce_grace_period
from concierge.db import session_scope
from concierge.models import Business, Subscription
from concierge.workers.celery_app import celery_app
from concierge.workers.loop import run

logger = logging.getLogger(__name__)


@celery_app.task(name="concierge.enforce_grace_periods")
def enforce_grace_periods_task() -> int:
    return run(_enforce_grace_periods())


async def _enforce_grace_periods() -> int:
    async with session_scope() as db:
        return await enforce_grace_periods(db)


async def enforce_grace_periods(db: AsyncSession, now: datetime | None = None) -> int:
    """Degrade every tenant whose grace period has expired. Returns the number degraded."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(Business, Subscription)
        .join(Subscription, Subscription.business_id == Business.id)
        .where(
            Subscription.payment_failed_at.is_not(None),
            Subscription.access_revoked_at.is_(None),
        )
    )
    degraded = 0
    for business, subscription in result.all():
        if await enforce_grace_period(db, business, subscription, now):
            degraded += 1
    if degraded:
        logger.warning("Grace sweep degraded %d business(es)", degraded)
    return degraded
