"""Tests for API endpoints."""

import uuid

import pytest
from httpx import AsyncClient

from pad.models.discovered_venue import DISCOVERED, REJECTED, VERIFIED
from pad.services.review_query import get_venue


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["app"] == "Planted Availability API"


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# --- Reads ---

@pytest.mark.asyncio
async def test_list_discovered_venues(client: AsyncClient, make_venue):
    await make_venue(name="Hiltl", city="Zürich", confidence_score=90)
    await make_venue(confidence_score=30)

    resp = await client.get("/api/v1/discovered-venues", params={"status": "discovered"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 2
    assert [v["name"] for v in data["venues"]] == ["Hiltl", "Tibits"]
    assert data["venues"][0]["confidence_bucket"] == "high"
    assert data["venues"][1]["confidence_bucket"] == "low"
    assert data["venues"][0]["address"]["country"] == "CH"
    assert data["venues"][0]["delivery_platforms"][0]["platform"] == "wolt"


@pytest.mark.asyncio
async def test_list_invalid_status(client: AsyncClient):
    resp = await client.get("/api/v1/discovered-venues", params={"status": "archived"})
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "validation_error"
    assert resp.json()["detail"]["field"] == "status"


@pytest.mark.asyncio
async def test_get_discovered_venue(client: AsyncClient, make_venue):
    venue = await make_venue()
    resp = await client.get(f"/api/v1/discovered-venues/{venue.id}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "Tibits"
    assert data["version"] == 1
    assert data["dishes"][0]["product"] == "planted.chicken"


@pytest.mark.asyncio
async def test_get_discovered_venue_not_found(client: AsyncClient):
    resp = await client.get(f"/api/v1/discovered-venues/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"] == "not_found"

    resp = await client.get("/api/v1/discovered-venues/not-a-uuid")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stats(client: AsyncClient, make_venue):
    await make_venue(confidence_score=75)
    await make_venue(city="Bern", status=REJECTED, rejection_reason="Closed", confidence_score=20)

    resp = await client.get("/api/v1/discovered-venues/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_discovered"] == 1
    assert data["total_rejected"] == 1
    assert data["by_country"] == {"CH": 2}
    assert data["by_platform"] == {"wolt": 2}
    assert data["by_confidence"] == {"low": 1, "medium": 0, "high": 1}


# --- Intake ---

@pytest.mark.asyncio
async def test_ingest(client: AsyncClient, hiltl_payload):
    resp = await client.post(
        "/api/v1/discovered-venues/ingest",
        json={"strategy_id": "uber-ch", "query": "planted zürich", "candidates": [hiltl_payload, {}]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["created"] == 1
    assert data["dropped"] == 1

    venue = await client.get(f"/api/v1/discovered-venues/{data['venue_ids'][0]}")
    assert venue.json()["status"] == DISCOVERED
    assert venue.json()["confidence_bucket"] == "high"


# --- Transitions ---

@pytest.mark.asyncio
async def test_verify(client: AsyncClient, db, make_venue):
    venue = await make_venue(name="Hiltl Sihlpost", city="Zürich")
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/verify",
        json={"updates": {"name": "Hiltl Sihlpost AG"}, "expected_version": 1},
        headers={"X-Reviewer": "anna"},
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["changed"] is True

    verified = await get_venue(db, venue.id)
    assert verified.status == VERIFIED
    assert verified.name == "Hiltl Sihlpost AG"

    resp = await client.post(f"/api/v1/discovered-venues/{venue.id}/verify")
    assert resp.status_code == 200
    assert resp.json()["changed"] is False


@pytest.mark.asyncio
async def test_verify_stale_version(client: AsyncClient, make_venue):
    venue = await make_venue()
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/verify", json={"expected_version": 7}
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "conflict"


@pytest.mark.asyncio
async def test_verify_rejects_unknown_fields(client: AsyncClient, make_venue):
    venue = await make_venue()
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/verify",
        json={"updates": {"status": "promoted"}},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_reject_requires_reason(client: AsyncClient, db, make_venue):
    venue = await make_venue()
    resp = await client.post(f"/api/v1/discovered-venues/{venue.id}/reject", json={"reason": ""})
    assert resp.status_code == 400
    assert resp.json()["detail"]["field"] == "reason"
    assert (await get_venue(db, venue.id)).status == DISCOVERED


@pytest.mark.asyncio
async def test_reject(client: AsyncClient, db, make_venue):
    venue = await make_venue()
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/reject",
        json={"reason": "Venue permanently closed"},
    )
    assert resp.status_code == 200

    rejected = await get_venue(db, venue.id)
    assert rejected.status == REJECTED
    assert rejected.rejection_reason == "Venue permanently closed"


@pytest.mark.asyncio
async def test_update_and_verify(client: AsyncClient, db, make_venue):
    venue = await make_venue()
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/update-and-verify",
        json={"address": {"street": "Stänzlergasse 4"}, "expected_version": 1},
    )
    assert resp.status_code == 200
    verified = await get_venue(db, venue.id)
    assert verified.street == "Stänzlergasse 4"
    assert verified.status == VERIFIED


@pytest.mark.asyncio
async def test_update_and_verify_without_changes(client: AsyncClient, make_venue):
    venue = await make_venue()
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/update-and-verify", json={"name": "Tibits"}
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_country(client: AsyncClient, db, make_venue):
    venue = await make_venue(country="DE")
    resp = await client.post(
        f"/api/v1/discovered-venues/{venue.id}/country", json={"country": "Schweiz"}
    )
    assert resp.status_code == 200
    assert (await get_venue(db, venue.id)).country == "CH"


@pytest.mark.asyncio
async def test_promote(client: AsyncClient, make_venue):
    venue = await make_venue(status=VERIFIED)
    resp = await client.post(f"/api/v1/discovered-venues/{venue.id}/promote")
    assert resp.status_code == 200
    data = resp.json()
    assert data["changed"] is True
    assert data["production_venue_id"] is not None

    again = await client.post(f"/api/v1/discovered-venues/{venue.id}/promote")
    assert again.status_code == 200
    assert again.json()["changed"] is False
    assert again.json()["production_venue_id"] == data["production_venue_id"]


@pytest.mark.asyncio
async def test_promote_unverified(client: AsyncClient, make_venue):
    venue = await make_venue()
    resp = await client.post(f"/api/v1/discovered-venues/{venue.id}/promote")
    assert resp.status_code == 409


# --- Bulk ---

@pytest.mark.asyncio
async def test_bulk_verify(client: AsyncClient, db, make_venue):
    first = await make_venue()
    second = await make_venue(city="Bern")
    missing = str(uuid.uuid4())

    resp = await client.post(
        "/api/v1/discovered-venues/bulk-verify",
        json={"ids": [str(first.id), missing, str(second.id)]},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["verified"] == 2
    assert data["failures"] == [{
        "id": missing,
        "error": "not_found",
        "message": f"Discovered venue {missing} not found",
    }]
    assert (await get_venue(db, first.id)).status == VERIFIED
    assert (await get_venue(db, second.id)).status == VERIFIED


@pytest.mark.asyncio
async def test_bulk_verify_empty(client: AsyncClient):
    resp = await client.post("/api/v1/discovered-venues/bulk-verify", json={"ids": []})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_bulk_reject(client: AsyncClient, make_venue):
    venue = await make_venue()
    resp = await client.post(
        "/api/v1/discovered-venues/bulk-reject",
        json={"ids": [str(venue.id)], "reason": ""},
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/api/v1/discovered-venues/bulk-reject",
        json={"ids": [str(venue.id)], "reason": "Duplicate listing"},
    )
    assert resp.status_code == 200
    assert resp.json()["rejected"] == 1


# --- Changelog ---

@pytest.mark.asyncio
async def test_changelog_records_reviewer(client: AsyncClient, make_venue):
    venue = await make_venue()
    await client.post(
        f"/api/v1/discovered-venues/{venue.id}/reject",
        json={"reason": "Not vegan"},
        headers={"X-Reviewer": "anna"},
    )

    resp = await client.get(
        "/api/v1/changelog",
        params={"collection": "discovered_venues", "document_id": str(venue.id)},
    )
    assert resp.status_code == 200
    entries = resp.json()
    assert len(entries) == 1
    assert entries[0]["source"] == {"type": "reviewer", "user_id": "anna"}
    assert entries[0]["reason"] == "Not vegan"


@pytest.mark.asyncio
async def test_ingest_batch_source(client: AsyncClient):
    wolt_venue = {
        "url": "https://wolt.com/en/che/bern/restaurant/tibits-bern",
        "venue": {"name": "tibits Bern", "city": "Bern", "rating": {"score": 8.8, "count": 60}},
        "items": [{"name": "Planted Chicken Curry", "baseprice": 2190, "currency": "CHF"}],
    }
    resp = await client.post(
        "/api/v1/discovered-venues/ingest",
        json={"source": "wolt", "candidates": [wolt_venue]},
    )
    assert resp.status_code == 200
    assert resp.json()["created"] == 1

    venue = await client.get(f"/api/v1/discovered-venues/{resp.json()['venue_ids'][0]}")
    data = venue.json()
    assert data["address"]["country"] == "CH"
    assert data["delivery_platforms"][0]["rating"] == pytest.approx(4.4)
    assert data["dishes"][0]["price"] == "CHF 21.90"
