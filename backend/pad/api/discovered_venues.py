"""API routes for the discovered venue review workflow."""

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pad.database import get_db
from pad.errors import PipelineError
from pad.schemas import ConfidenceFactor, DishCandidate, PlatformLink, ReviewFilter, VenueUpdate
from pad.services import review_query
from pad.services.ingestion import IngestionService
from pad.services.promotion import PromotionWriter
from pad.services.review import BulkResult, ReviewService
from pad.services.scoring import confidence_bucket

router = APIRouter(prefix="/discovered-venues", tags=["discovered-venues"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class AddressResponse(BaseModel):
    street: str | None
    city: str
    postal_code: str | None
    country: str


class CoordinatesResponse(BaseModel):
    lat: float
    lng: float


class DiscoveredVenueResponse(BaseModel):
    id: uuid.UUID
    name: str
    address: AddressResponse
    coordinates: CoordinatesResponse | None
    is_chain: bool
    chain_id: str | None
    chain_name: str | None
    chain_confidence: float | None
    delivery_platforms: list[PlatformLink]
    planted_products: list[str]
    dishes: list[DishCandidate]
    confidence_score: int
    confidence_bucket: str
    confidence_factors: list[ConfidenceFactor]
    status: str
    rejection_reason: str | None
    production_venue_id: uuid.UUID | None
    discovered_by_strategy_id: str | None
    discovered_by_query: str | None
    created_at: datetime
    updated_at: datetime
    verified_at: datetime | None
    promoted_at: datetime | None
    last_seen_at: datetime
    version: int


class VenueListResponse(BaseModel):
    venues: list[DiscoveredVenueResponse]
    total: int


class StatsResponse(BaseModel):
    total_discovered: int
    total_verified: int
    total_rejected: int
    total_promoted: int
    total_stale: int
    by_country: dict[str, int]
    by_platform: dict[str, int]
    by_confidence: dict[str, int]


class ActionResponse(BaseModel):
    success: bool
    message: str
    changed: bool = True
    production_venue_id: uuid.UUID | None = None


class VerifyRequest(BaseModel):
    updates: VenueUpdate | None = None
    expected_version: int | None = None


class RejectRequest(BaseModel):
    reason: str | None = None
    expected_version: int | None = None


class UpdateAndVerifyRequest(VenueUpdate):
    expected_version: int | None = None


class CountryRequest(BaseModel):
    country: str


class BulkVerifyRequest(BaseModel):
    ids: list[str] = Field(min_length=1)


class BulkRejectRequest(BaseModel):
    ids: list[str] = Field(min_length=1)
    reason: str | None = None


class BulkFailure(BaseModel):
    id: str
    error: str
    message: str


class BulkVerifyResponse(BaseModel):
    success: bool
    verified: int
    unchanged: int
    failures: list[BulkFailure]
    cancelled: bool = False


class BulkRejectResponse(BaseModel):
    success: bool
    rejected: int
    unchanged: int
    failures: list[BulkFailure]
    cancelled: bool = False


class IngestRequest(BaseModel):
    source: str | None = None  # default for candidates that do not name one
    strategy_id: str | None = None
    query: str | None = None
    candidates: list[dict[str, Any]]


class IngestResponse(BaseModel):
    created: int
    merged: int
    linked: int
    dropped: int
    venue_ids: list[str]
    errors: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _http_error(exc: PipelineError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict())


def _to_response(venue) -> DiscoveredVenueResponse:
    return DiscoveredVenueResponse(
        id=venue.id,
        name=venue.name,
        address=AddressResponse(**venue.address),
        coordinates=venue.coordinates,
        is_chain=venue.is_chain,
        chain_id=venue.chain_id,
        chain_name=venue.chain_name,
        chain_confidence=venue.chain_confidence,
        delivery_platforms=venue.platform_links(),
        planted_products=venue.planted_products or [],
        dishes=venue.dishes or [],
        confidence_score=venue.confidence_score,
        confidence_bucket=confidence_bucket(venue.confidence_score),
        confidence_factors=venue.confidence_factors or [],
        status=venue.status,
        rejection_reason=venue.rejection_reason,
        production_venue_id=venue.production_venue_id,
        discovered_by_strategy_id=venue.discovered_by_strategy_id,
        discovered_by_query=venue.discovered_by_query,
        created_at=venue.created_at,
        updated_at=venue.updated_at,
        verified_at=venue.verified_at,
        promoted_at=venue.promoted_at,
        last_seen_at=venue.last_seen_at,
        version=venue.version,
    )


def _parse_id(venue_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(venue_id)
    except ValueError:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "message": f"Discovered venue {venue_id} not found"},
        )


def _bulk_failures(result: BulkResult) -> list[BulkFailure]:
    return [
        BulkFailure(id=f["id"], error=f["error"], message=f["message"])
        for f in result.failures
    ]


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("", response_model=VenueListResponse)
async def list_discovered_venues(
    status: str | None = Query(None),
    country: str | None = Query(None, min_length=2, max_length=2),
    platform: str | None = Query(None),
    chain_id: str | None = Query(None),
    min_confidence: int | None = Query(None),
    max_confidence: int | None = Query(None),
    limit: int = Query(50),
    offset: int = Query(0),
    db: AsyncSession = Depends(get_db),
):
    """Review queue, highest confidence first."""
    filters = ReviewFilter(
        status=status,
        country=country,
        platform=platform,
        chain_id=chain_id,
        min_confidence=min_confidence,
        max_confidence=max_confidence,
        limit=limit,
        offset=offset,
    )
    try:
        page = await review_query.list_venues(filters, session=db)
    except PipelineError as exc:
        raise _http_error(exc)
    return VenueListResponse(venues=[_to_response(v) for v in page.venues], total=page.total)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)):
    return await review_query.review_stats(session=db)


@router.get("/{venue_id}", response_model=DiscoveredVenueResponse)
async def get_discovered_venue(venue_id: str, db: AsyncSession = Depends(get_db)):
    try:
        venue = await review_query.get_venue(db, _parse_id(venue_id), refresh=False)
    except PipelineError as exc:
        raise _http_error(exc)
    return _to_response(venue)


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


@router.post("/ingest", response_model=IngestResponse)
async def ingest_candidates(body: IngestRequest, db: AsyncSession = Depends(get_db)):
    """Run raw scraper candidates through normalize, match, score and store."""
    candidates = [
        {"source": body.source, **c} if body.source and "source" not in c else c
        for c in body.candidates
    ]
    result = await IngestionService().ingest(
        candidates, strategy_id=body.strategy_id, query=body.query, session=db
    )
    return result.to_dict()


# ---------------------------------------------------------------------------
# Bulk transitions
# ---------------------------------------------------------------------------


@router.post("/bulk-verify", response_model=BulkVerifyResponse)
async def bulk_verify(
    body: BulkVerifyRequest,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await ReviewService().bulk_verify(body.ids, reviewer=x_reviewer, session=db)
    except PipelineError as exc:
        raise _http_error(exc)
    return BulkVerifyResponse(
        success=result.count > 0 or not result.failures,
        verified=len(result.succeeded),
        unchanged=len(result.unchanged),
        failures=_bulk_failures(result),
        cancelled=result.cancelled,
    )


@router.post("/bulk-reject", response_model=BulkRejectResponse)
async def bulk_reject(
    body: BulkRejectRequest,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await ReviewService().bulk_reject(
            body.ids, body.reason, reviewer=x_reviewer, session=db
        )
    except PipelineError as exc:
        raise _http_error(exc)
    return BulkRejectResponse(
        success=result.count > 0 or not result.failures,
        rejected=len(result.succeeded),
        unchanged=len(result.unchanged),
        failures=_bulk_failures(result),
        cancelled=result.cancelled,
    )


# ---------------------------------------------------------------------------
# Single transitions
# ---------------------------------------------------------------------------


@router.post("/{venue_id}/verify", response_model=ActionResponse)
async def verify_venue(
    venue_id: str,
    body: VerifyRequest | None = None,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    body = body or VerifyRequest()
    try:
        result = await ReviewService().verify(
            _parse_id(venue_id),
            body.updates,
            expected_version=body.expected_version,
            reviewer=x_reviewer,
            session=db,
        )
    except PipelineError as exc:
        raise _http_error(exc)
    return ActionResponse(
        success=True,
        message=result.message,
        changed=result.changed,
        production_venue_id=result.promotion.production_venue_id if result.promotion else None,
    )


@router.post("/{venue_id}/reject", response_model=ActionResponse)
async def reject_venue(
    venue_id: str,
    body: RejectRequest,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await ReviewService().reject(
            _parse_id(venue_id),
            body.reason,
            expected_version=body.expected_version,
            reviewer=x_reviewer,
            session=db,
        )
    except PipelineError as exc:
        raise _http_error(exc)
    return ActionResponse(success=True, message=result.message, changed=result.changed)


@router.post("/{venue_id}/update-and-verify", response_model=ActionResponse)
async def update_and_verify_venue(
    venue_id: str,
    body: UpdateAndVerifyRequest,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    updates = VenueUpdate(**body.model_dump(exclude_unset=True, exclude={"expected_version"}))
    try:
        result = await ReviewService().update_and_verify(
            _parse_id(venue_id),
            updates,
            expected_version=body.expected_version,
            reviewer=x_reviewer,
            session=db,
        )
    except PipelineError as exc:
        raise _http_error(exc)
    return ActionResponse(
        success=True,
        message=result.message,
        changed=result.changed,
        production_venue_id=result.promotion.production_venue_id if result.promotion else None,
    )


@router.post("/{venue_id}/promote", response_model=ActionResponse)
async def promote_venue(
    venue_id: str,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await PromotionWriter().promote(
            _parse_id(venue_id), reviewer=x_reviewer, session=db
        )
    except PipelineError as exc:
        raise _http_error(exc)
    return ActionResponse(
        success=True,
        message=result.message,
        changed=not result.already_promoted,
        production_venue_id=result.production_venue_id,
    )


@router.post("/{venue_id}/country", response_model=ActionResponse)
async def update_country(
    venue_id: str,
    body: CountryRequest,
    x_reviewer: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await ReviewService().update_country(
            _parse_id(venue_id), body.country, reviewer=x_reviewer, session=db
        )
    except PipelineError as exc:
        raise _http_error(exc)
    return ActionResponse(success=True, message=result.message, changed=result.changed)
