"""Tests for the review listing and statistics."""

import pytest
import pytest_asyncio

from pad.errors import ValidationError
from pad.models.discovered_venue import PROMOTED, REJECTED, STALE, VERIFIED
from pad.schemas import ReviewFilter
from pad.services.review_query import list_venues, review_stats


@pytest_asyncio.fixture
async def queue(make_venue):
    return [
        await make_venue(name="Hiltl", city="Zürich", confidence_score=90),
        await make_venue(name="Tibits", confidence_score=70),
        await make_venue(
            name="Green Club", city="Wien", country="AT", confidence_score=40,
            delivery_platforms=[
                {"platform": "lieferando", "url": "https://www.lieferando.at/speisekarte/green-club"},
                {"platform": "wolt", "url": "https://wolt.com/en/aut/vienna/restaurant/green-club"},
            ],
        ),
        await make_venue(
            name="Pizza Express", city="Berlin", country="DE", confidence_score=39,
            status=REJECTED, rejection_reason="No planted dishes",
        ),
    ]


@pytest.mark.asyncio
async def test_highest_confidence_first(db, queue):
    page = await list_venues(ReviewFilter(), session=db)
    assert [v.name for v in page.venues] == ["Hiltl", "Tibits", "Green Club", "Pizza Express"]
    assert page.total == 4


@pytest.mark.asyncio
async def test_pagination_keeps_total(db, queue):
    page = await list_venues(ReviewFilter(limit=2, offset=1), session=db)
    assert [v.name for v in page.venues] == ["Tibits", "Green Club"]
    assert page.total == 4


@pytest.mark.asyncio
async def test_filters(db, queue):
    discovered = await list_venues(ReviewFilter(status="discovered"), session=db)
    assert discovered.total == 3

    swiss = await list_venues(ReviewFilter(country="ch"), session=db)
    assert {v.name for v in swiss.venues} == {"Hiltl", "Tibits"}

    lieferando = await list_venues(ReviewFilter(platform="lieferando"), session=db)
    assert [v.name for v in lieferando.venues] == ["Green Club"]

    confident = await list_venues(
        ReviewFilter(min_confidence=40, max_confidence=70), session=db
    )
    assert [v.name for v in confident.venues] == ["Tibits", "Green Club"]


@pytest.mark.asyncio
async def test_chain_filter(db, make_venue):
    await make_venue(name="tibits Basel", is_chain=True, chain_id="chain-tibits", chain_name="tibits")
    await make_venue(name="Hiltl", city="Zürich")
    page = await list_venues(ReviewFilter(chain_id="chain-tibits"), session=db)
    assert [v.name for v in page.venues] == ["tibits Basel"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "filters",
    [
        ReviewFilter(status="archived"),
        ReviewFilter(platform="foodora"),
        ReviewFilter(min_confidence=-1),
        ReviewFilter(max_confidence=101),
        ReviewFilter(min_confidence=80, max_confidence=20),
        ReviewFilter(limit=0),
        ReviewFilter(limit=201),
        ReviewFilter(offset=-5),
    ],
)
async def test_invalid_filters(db, filters):
    with pytest.raises(ValidationError):
        await list_venues(filters, session=db)


@pytest.mark.asyncio
async def test_stats(db, queue, make_venue):
    await make_venue(name="Old Place", status=STALE, confidence_score=50)
    await make_venue(name="Done", status=VERIFIED, confidence_score=80)
    await make_venue(name="Live", status=PROMOTED, confidence_score=85)

    stats = await review_stats(session=db)

    assert stats["total_discovered"] == 3
    assert stats["total_rejected"] == 1
    assert stats["total_stale"] == 1
    assert stats["total_verified"] == 1
    assert stats["total_promoted"] == 1
    assert stats["by_country"] == {"AT": 1, "CH": 5, "DE": 1}
    assert stats["by_confidence"] == {"low": 1, "medium": 2, "high": 4}
    assert stats["by_platform"] == {"lieferando": 1, "wolt": 7}
    assert sum(stats["by_country"].values()) == sum(stats["by_confidence"].values())


@pytest.mark.asyncio
async def test_stats_empty(db):
    stats = await review_stats(session=db)
    assert stats["total_discovered"] == 0
    assert stats["by_country"] == {}
    assert stats["by_confidence"] == {"low": 0, "medium": 0, "high": 0}
