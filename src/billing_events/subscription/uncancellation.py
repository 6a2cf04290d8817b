"""Uncancellation handler: remove the scheduled cancellation action."""

from __future__ import annotations

import logging

from billing_events.core.context import HandlerContext
from billing_events.core.errors import ScheduleNotFound
from billing_events.core.models import SubscriptionSnapshot
from billing_events.scheduler.store import cancellation_schedule_name

logger = logging.getLogger(__name__)


async def handle_uncancellation(
    ctx: HandlerContext, subscription: SubscriptionSnapshot,
) -> bool:
    """Delete the subscription's cancellation schedule.

    Returns ``True`` if a schedule was deleted. A missing schedule is not
    an error; every other failure propagates.
    """
    name = cancellation_schedule_name(subscription.id)
    try:
        await ctx.schedules.delete_schedule(name)
    except ScheduleNotFound:
        logger.info("Schedule not found, skipping: %s", name)
        return False
    except Exception:
        logger.error("Error deleting schedule %s", name, exc_info=True)
        raise

    logger.info("Deleted schedule %s", name)
    return True
