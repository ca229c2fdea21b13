"""One-off run of the duplicate reconciliation and staleness sweep.

Folds discovered venues created twice by racing scrapers into the oldest
record (the others are rejected as "Duplicate of <id>"), then marks venues
no scraper has seen within the configured window as stale.

Run from the backend directory:
    PYTHONPATH=. python scripts/reconcile_duplicates.py [--dry-run] [--skip-stale]
"""

import asyncio
import logging
import sys

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


async def main():
    from pad.jobs.scheduler import mark_stale_venues
    from pad.services.venue_matcher import VenueMatcher

    dry_run = "--dry-run" in sys.argv

    report = await VenueMatcher().reconcile_duplicates(dry_run=dry_run)
    logger.info(
        "%s %d duplicate record(s) across %d group(s).",
        "Would absorb" if dry_run else "Absorbed",
        report.absorbed,
        report.groups,
    )

    if dry_run or "--skip-stale" in sys.argv:
        return

    marked = await mark_stale_venues()
    logger.info("Marked %d venue(s) stale.", marked)


if __name__ == "__main__":
    asyncio.run(main())
