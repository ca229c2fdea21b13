"""APScheduler job configuration for pipeline maintenance."""

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pad.config import get_settings
from pad.database import async_session, utcnow
from pad.models import DiscoveredVenue
from pad.models.discovered_venue import DISCOVERED, STALE
from pad.services import changelog
from pad.services.venue_matcher import VenueMatcher

logger = logging.getLogger(__name__)


async def mark_stale_venues(
    *,
    stale_after_days: int | None = None,
    session: AsyncSession | None = None,
) -> int:
    """Move discovered venues no scraper has seen recently to ``stale``.

    Returns the number of venues marked.  A later scrape touching a stale
    venue moves it back to ``discovered``.
    """
    days = stale_after_days if stale_after_days is not None else get_settings().stale_after_days
    cutoff = utcnow() - timedelta(days=days)

    close_session = False
    if session is None:
        session = async_session()
        close_session = True

    try:
        stmt = select(DiscoveredVenue).where(
            DiscoveredVenue.status == DISCOVERED,
            DiscoveredVenue.last_seen_at < cutoff,
        )
        result = await session.execute(stmt)
        venues = list(result.scalars().all())

        for venue in venues:
            venue.status = STALE
            changelog.record_change(
                session,
                action="updated",
                collection=changelog.DISCOVERED_VENUES,
                document_id=venue.id,
                changes=[{"field": "status", "before": DISCOVERED, "after": STALE}],
                reason=f"not seen by any scraper for {days} days",
            )
        await session.commit()

        if venues:
            logger.info("Marked %d venue(s) stale (not seen since %s)", len(venues), cutoff.date())
        return len(venues)
    finally:
        if close_session:
            await session.close()


async def stale_sweep_job():
    try:
        await mark_stale_venues()
    except Exception:
        logger.exception("Stale sweep failed.")


async def reconcile_job():
    try:
        await VenueMatcher().reconcile_duplicates()
    except Exception:
        logger.exception("Duplicate reconciliation failed.")


def start_scheduler() -> AsyncIOScheduler:
    """Configure and start the APScheduler."""
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        stale_sweep_job,
        IntervalTrigger(minutes=settings.stale_sweep_interval_minutes),
        id="stale_sweep",
        name="Mark unseen discovered venues stale",
        replace_existing=True,
    )

    # Nightly, after the scrapers' runs have settled.
    scheduler.add_job(
        reconcile_job,
        CronTrigger(hour=settings.reconcile_cron_hour, minute=0),
        id="reconcile_duplicates",
        name="Merge duplicate discovered venues",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    return scheduler
