"""Review listing and aggregate statistics over discovered venues."""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import case, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pad.catalog import PLATFORMS
from pad.database import async_session
from pad.errors import NotFound, ValidationError
from pad.models import DiscoveredPlatformLink, DiscoveredVenue
from pad.models.discovered_venue import (
    DISCOVERED,
    PROMOTED,
    REJECTED,
    STALE,
    VENUE_STATUSES,
    VERIFIED,
)
from pad.schemas import ReviewFilter
from pad.services.scoring import HIGH_THRESHOLD, MEDIUM_THRESHOLD

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


@dataclass(frozen=True, slots=True)
class ReviewPage:
    venues: list[DiscoveredVenue]
    total: int


async def get_venue(
    session: AsyncSession, venue_id: uuid.UUID, *, refresh: bool = True
) -> DiscoveredVenue:
    """Load one discovered venue with its platform links, or raise NotFound."""
    stmt = select(DiscoveredVenue).where(DiscoveredVenue.id == venue_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    venue = result.scalar_one_or_none()
    if venue is None:
        raise NotFound(f"Discovered venue {venue_id} not found")
    return venue


def _validate(filters: ReviewFilter) -> None:
    if filters.status is not None and filters.status not in VENUE_STATUSES:
        raise ValidationError(
            f"Invalid status '{filters.status}', expected one of {', '.join(VENUE_STATUSES)}",
            field="status",
        )
    if filters.platform is not None and filters.platform not in PLATFORMS:
        raise ValidationError(f"Unknown platform '{filters.platform}'", field="platform")
    for name in ("min_confidence", "max_confidence"):
        value = getattr(filters, name)
        if value is not None and not 0 <= value <= 100:
            raise ValidationError(f"{name} must be between 0 and 100", field=name)
    if (
        filters.min_confidence is not None
        and filters.max_confidence is not None
        and filters.min_confidence > filters.max_confidence
    ):
        raise ValidationError("min_confidence is greater than max_confidence", field="min_confidence")
    if not 1 <= filters.limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
    if filters.offset < 0:
        raise ValidationError("offset must not be negative", field="offset")


def _conditions(filters: ReviewFilter) -> list:
    conditions = []
    if filters.status:
        conditions.append(DiscoveredVenue.status == filters.status)
    if filters.country:
        conditions.append(DiscoveredVenue.country == filters.country.upper())
    if filters.chain_id:
        conditions.append(DiscoveredVenue.chain_id == filters.chain_id)
    if filters.min_confidence is not None:
        conditions.append(DiscoveredVenue.confidence_score >= filters.min_confidence)
    if filters.max_confidence is not None:
        conditions.append(DiscoveredVenue.confidence_score <= filters.max_confidence)
    if filters.platform:
        conditions.append(
            exists().where(
                DiscoveredPlatformLink.venue_id == DiscoveredVenue.id,
                DiscoveredPlatformLink.platform == filters.platform,
            )
        )
    return conditions


async def list_venues(
    filters: ReviewFilter, *, session: AsyncSession | None = None
) -> ReviewPage:
    """One page of venues, best confidence first, plus the unpaginated total."""
    _validate(filters)

    close_session = False
    if session is None:
        session = async_session()
        close_session = True

    try:
        conditions = _conditions(filters)

        count_stmt = select(func.count()).select_from(DiscoveredVenue).where(*conditions)
        total = (await session.execute(count_stmt)).scalar_one()

        stmt = (
            select(DiscoveredVenue)
            .where(*conditions)
            .order_by(
                DiscoveredVenue.confidence_score.desc(),
                DiscoveredVenue.created_at.desc(),
                DiscoveredVenue.id,
            )
            .limit(filters.limit)
            .offset(filters.offset)
        )
        result = await session.execute(stmt)
        return ReviewPage(venues=list(result.scalars().all()), total=total)
    finally:
        if close_session:
            await session.close()


async def review_stats(*, session: AsyncSession | None = None) -> dict:
    """Counts by status, country, platform and confidence bucket.

    Status, country and bucket counts come from a single grouped query and
    are mutually consistent.  Platform counts are a second query in the same
    transaction; under READ COMMITTED a concurrent insert can make them
    disagree slightly with the rest.
    """
    close_session = False
    if session is None:
        session = async_session()
        close_session = True

    try:
        bucket = case(
            (DiscoveredVenue.confidence_score >= HIGH_THRESHOLD, "high"),
            (DiscoveredVenue.confidence_score >= MEDIUM_THRESHOLD, "medium"),
            else_="low",
        ).label("bucket")
        grouped = (
            select(DiscoveredVenue.status, DiscoveredVenue.country, bucket, func.count())
            .group_by(DiscoveredVenue.status, DiscoveredVenue.country, bucket)
        )
        by_status = {status: 0 for status in VENUE_STATUSES}
        by_country: dict[str, int] = {}
        by_confidence = {"low": 0, "medium": 0, "high": 0}
        for status, country, bucket_name, count in (await session.execute(grouped)).all():
            by_status[status] = by_status.get(status, 0) + count
            by_country[country] = by_country.get(country, 0) + count
            by_confidence[bucket_name] += count

        platform_stmt = (
            select(DiscoveredPlatformLink.platform, func.count())
            .group_by(DiscoveredPlatformLink.platform)
        )
        by_platform = {
            platform: count
            for platform, count in (await session.execute(platform_stmt)).all()
        }

        return {
            "total_discovered": by_status[DISCOVERED],
            "total_verified": by_status[VERIFIED],
            "total_rejected": by_status[REJECTED],
            "total_promoted": by_status[PROMOTED],
            "total_stale": by_status[STALE],
            "by_country": dict(sorted(by_country.items())),
            "by_platform": dict(sorted(by_platform.items())),
            "by_confidence": by_confidence,
        }
    finally:
        if close_session:
            await session.close()
