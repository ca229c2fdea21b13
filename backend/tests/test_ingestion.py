"""Tests for the scraper intake pipeline."""

import pytest
from sqlalchemy import func, select

from pad.models import DiscoveredVenue
from pad.models.discovered_venue import DISCOVERED, REJECTED, STALE
from pad.services import changelog
from pad.services.ingestion import IngestionService
from pad.services.normalizer import CandidateNormalizer
from pad.services.review_query import get_venue
from pad.services.scoring import ConfidenceScorer
from pad.services.venue_matcher import VenueMatcher


def _service() -> IngestionService:
    return IngestionService(
        normalizer=CandidateNormalizer(fallback_sku="planted.chicken"),
        scorer=ConfidenceScorer(fallback_sku="planted.chicken"),
        matcher=VenueMatcher(fuzzy_threshold=90),
    )


def _tibits(platform: str, url: str) -> dict:
    return {
        "name": "Tibits",
        "address": {"city": "Basel", "country": "CH"},
        "delivery_platforms": [{"platform": platform, "url": url, "rating": 4.3}],
        "dishes": [{"name": "Planted Kebab Bowl"}],
    }


async def _count(db) -> int:
    return (await db.execute(select(func.count()).select_from(DiscoveredVenue))).scalar_one()


@pytest.mark.asyncio
async def test_new_candidate_stored_as_discovered(db, hiltl_payload):
    result = await _service().ingest([hiltl_payload], query="planted zürich", session=db)

    assert result.created == 1
    assert result.dropped == 0
    venue = await get_venue(db, result.venue_ids[0])
    assert venue.status == DISCOVERED
    assert venue.confidence_score >= 70
    assert any(f["factor"] == "platform_rating" for f in venue.confidence_factors)
    assert venue.is_chain is True
    assert venue.chain_name == "Hiltl"
    assert venue.chain_confidence == pytest.approx(venue.confidence_score / 100)
    assert venue.production_venue_id is None
    assert venue.discovered_by_query == "planted zürich"

    entries = await changelog.list_changes(document_id=str(venue.id), session=db)
    assert [e.action for e in entries] == ["created"]
    assert entries[0].reason == "Discovered via planted zürich"


@pytest.mark.asyncio
async def test_second_platform_merges_into_existing(db):
    result = await _service().ingest(
        [
            _tibits("wolt", "https://wolt.com/en/che/basel/restaurant/tibits"),
            _tibits("uber-eats", "https://www.ubereats.com/ch/store/tibits-basel/x1"),
        ],
        session=db,
    )

    assert result.created == 1
    assert result.merged == 1
    assert result.venue_ids[0] == result.venue_ids[1]
    assert await _count(db) == 1

    venue = await get_venue(db, result.venue_ids[0])
    platforms = [p["platform"] for p in venue.platform_links()]
    assert platforms == ["wolt", "uber-eats"]
    assert len(set(platforms)) == len(platforms)
    assert [d["name"] for d in venue.dishes] == ["Planted Kebab Bowl"]
    assert any(f["factor"] == "corroborated" for f in venue.confidence_factors)


@pytest.mark.asyncio
async def test_same_platform_twice_adds_nothing(db):
    payload = _tibits("wolt", "https://wolt.com/en/che/basel/restaurant/tibits")
    first = await _service().ingest([payload], session=db)
    second = await _service().ingest([payload], session=db)

    assert second.merged == 1
    venue = await get_venue(db, first.venue_ids[0])
    assert [p["platform"] for p in venue.platform_links()] == ["wolt"]


@pytest.mark.asyncio
async def test_chain_sibling_shares_chain_id(db):
    basel = _tibits("wolt", "https://wolt.com/en/che/basel/restaurant/tibits")
    bern = _tibits("wolt", "https://wolt.com/en/che/bern/restaurant/tibits")
    bern["name"] = "tibits Bern"
    bern["address"]["city"] = "Bern"

    result = await _service().ingest([basel, bern], session=db)

    assert result.created == 1
    assert result.linked == 1
    first = await get_venue(db, result.venue_ids[0])
    second = await get_venue(db, result.venue_ids[1])
    assert first.chain_id is not None
    assert second.chain_id == first.chain_id
    assert first.chain_confidence == second.chain_confidence


@pytest.mark.asyncio
async def test_malformed_candidates_dropped(db, hiltl_payload):
    broken = dict(hiltl_payload, name="")
    result = await _service().ingest([broken, hiltl_payload], session=db)

    assert result.dropped == 1
    assert result.created == 1
    assert result.errors[0]["index"] == 0
    assert result.errors[0]["error"] == "malformed_candidate"
    assert result.errors[0]["field"] == "name"


@pytest.mark.asyncio
async def test_rescrape_revives_stale_venue(db, make_venue):
    stale = await make_venue(status=STALE)
    result = await _service().ingest(
        [_tibits("uber-eats", "https://www.ubereats.com/ch/store/tibits-basel/x1")], session=db
    )

    assert result.merged == 1
    venue = await get_venue(db, stale.id)
    assert venue.status == DISCOVERED
    assert [p["platform"] for p in venue.platform_links()] == ["wolt", "uber-eats"]


@pytest.mark.asyncio
async def test_rejected_venue_stays_rejected(db, make_venue):
    rejected = await make_venue(status=REJECTED, rejection_reason="Permanently closed")
    result = await _service().ingest(
        [_tibits("uber-eats", "https://www.ubereats.com/ch/store/tibits-basel/x1")], session=db
    )

    assert result.merged == 1
    venue = await get_venue(db, rejected.id)
    assert venue.status == REJECTED
    assert venue.rejection_reason == "Permanently closed"
    assert [p["platform"] for p in venue.platform_links()] == ["wolt"]


@pytest.mark.asyncio
async def test_production_match_adds_platform_only(db, production_venue, hiltl_payload):
    result = await _service().ingest([hiltl_payload], session=db)

    assert result.merged == 1
    assert result.venue_ids == [production_venue.id]
    assert await _count(db) == 0
    assert [p["platform"] for p in production_venue.delivery_platforms] == ["wolt", "uber-eats"]

    entries = await changelog.list_changes(
        collection=changelog.VENUES, document_id=str(production_venue.id), session=db
    )
    assert len(entries) == 1


@pytest.mark.asyncio
async def test_strategy_use_counted(db, sample_strategy, hiltl_payload):
    await _service().ingest([hiltl_payload], strategy_id=sample_strategy.id, session=db)
    await db.refresh(sample_strategy)
    assert sample_strategy.total_uses == 1
    assert sample_strategy.last_used is not None


@pytest.mark.asyncio
async def test_unknown_strategy_created(db, hiltl_payload):
    result = await _service().ingest([hiltl_payload], strategy_id="uber-ch-new", session=db)
    venue = await get_venue(db, result.venue_ids[0])
    assert venue.discovered_by_strategy_id == "uber-ch-new"
