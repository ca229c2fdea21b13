"""Scraper intake: normalize, match, score and store discovered venues."""

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from pad.database import async_session, utcnow
from pad.errors import MalformedCandidate
from pad.models import DiscoveredVenue, DiscoveryStrategy, Venue
from pad.models.discovered_venue import DISCOVERED, PROMOTED, STALE, VERIFIED
from pad.schemas import DiscoveredVenueCandidate
from pad.services import changelog
from pad.services.normalizer import CandidateNormalizer
from pad.services.scoring import ConfidenceScorer, ScoringContext
from pad.services.venue_matcher import MatchDecision, VenueMatcher, absorb

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    created: int = 0
    merged: int = 0
    linked: int = 0
    dropped: int = 0
    venue_ids: list[uuid.UUID] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "merged": self.merged,
            "linked": self.linked,
            "dropped": self.dropped,
            "venue_ids": [str(v) for v in self.venue_ids],
            "errors": self.errors,
        }


class IngestionService:
    """Runs raw scraper output through the discovery pipeline."""

    def __init__(
        self,
        normalizer: CandidateNormalizer | None = None,
        scorer: ConfidenceScorer | None = None,
        matcher: VenueMatcher | None = None,
    ) -> None:
        self.normalizer = normalizer or CandidateNormalizer()
        self.scorer = scorer or ConfidenceScorer()
        self.matcher = matcher or VenueMatcher()

    async def ingest(
        self,
        payloads: list[dict],
        *,
        strategy_id: str | None = None,
        query: str | None = None,
        session: AsyncSession | None = None,
    ) -> IngestResult:
        """Store every usable candidate in *payloads*.

        Malformed candidates are logged and counted as dropped; they never
        stop the rest of the batch.  Each stored candidate is committed on
        its own.
        """
        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            result = IngestResult()
            if strategy_id:
                await self._record_strategy_use(session, strategy_id)

            for index, payload in enumerate(payloads):
                try:
                    candidate = self.normalizer.normalize(
                        payload, strategy_id=strategy_id, query=query
                    )
                except MalformedCandidate as exc:
                    logger.warning("Dropping candidate #%d: %s", index, exc.message)
                    result.dropped += 1
                    result.errors.append({"index": index, **exc.to_dict()})
                    continue

                decision = await self.matcher.match(candidate, session)
                venue_id = await self.store(candidate, decision, session=session)
                await session.commit()

                if decision.kind == "merge":
                    result.merged += 1
                elif decision.kind == "chain_sibling":
                    result.linked += 1
                else:
                    result.created += 1
                result.venue_ids.append(venue_id)

            logger.info(
                "Ingested %d candidate(s): %d created, %d merged, %d linked, %d dropped",
                len(payloads), result.created, result.merged, result.linked, result.dropped,
            )
            return result
        finally:
            if close_session:
                await session.close()

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    async def store(
        self,
        candidate: DiscoveredVenueCandidate,
        decision: MatchDecision,
        *,
        session: AsyncSession,
    ) -> uuid.UUID:
        """Apply *decision* for *candidate*; the caller commits."""
        if decision.kind == "merge" and decision.target_store == "production":
            return await self._merge_production(session, decision.target_id, candidate)
        if decision.kind == "merge":
            return await self._merge_discovered(session, decision.target_id, candidate)
        return await self._insert(session, candidate, decision)

    async def _insert(
        self,
        session: AsyncSession,
        candidate: DiscoveredVenueCandidate,
        decision: MatchDecision,
    ) -> uuid.UUID:
        chain_name = decision.chain_name or candidate.chain_name
        chain_id = decision.chain_id
        if chain_id is None and chain_name:
            chain_id = uuid.uuid4().hex

        scored = candidate.model_copy(update={"chain_name": chain_name, "is_chain": bool(chain_id)})
        score, factors = self.scorer.score(scored, ScoringContext(chain_match=decision.chain_exact))

        venue = DiscoveredVenue(
            name=candidate.name,
            street=candidate.address.street,
            city=candidate.address.city,
            postal_code=candidate.address.postal_code,
            country=candidate.address.country,
            latitude=candidate.coordinates.lat if candidate.coordinates else None,
            longitude=candidate.coordinates.lng if candidate.coordinates else None,
            is_chain=bool(chain_id),
            chain_id=chain_id,
            chain_name=chain_name,
            planted_products=list(candidate.planted_products),
            dishes=[d.model_dump() for d in candidate.dishes],
            confidence_score=score,
            confidence_factors=[f.model_dump() for f in factors],
            status=DISCOVERED,
            discovered_by_strategy_id=candidate.discovered_by_strategy_id,
            discovered_by_query=candidate.discovered_by_query,
            last_seen_at=utcnow(),
        )
        venue.set_platform_links([p.model_dump() for p in candidate.delivery_platforms])
        session.add(venue)
        await session.flush()

        if chain_id:
            await self.matcher.refresh_chain_confidence(session, chain_id)

        source = candidate.discovered_by_query or candidate.discovered_by_strategy_id
        changelog.record_change(
            session,
            action="created",
            collection=changelog.DISCOVERED_VENUES,
            document_id=venue.id,
            changes=[],
            reason=f"Discovered via {source}" if source else "Discovered by scraper",
        )
        logger.info(
            "New discovered venue '%s' (%s, %s) score=%d%s",
            venue.name, venue.city, venue.country, score,
            f" chain={chain_name}" if chain_id else "",
        )
        return venue.id

    async def _merge_discovered(
        self,
        session: AsyncSession,
        venue_id: uuid.UUID,
        candidate: DiscoveredVenueCandidate,
    ) -> uuid.UUID:
        venue = await session.get(DiscoveredVenue, venue_id)
        links = [p.model_dump() for p in candidate.delivery_platforms]
        before = venue.snapshot()

        if venue.status in (DISCOVERED, STALE):
            absorb(venue, links, [d.model_dump() for d in candidate.dishes])
            if venue.status == STALE:
                venue.status = DISCOVERED
            self.scorer.rescore(venue, ScoringContext(
                duplicate=True,
                chain_match=any(
                    f["factor"] == "chain_match" for f in venue.confidence_factors or []
                ),
            ))
        elif venue.status in (VERIFIED, PROMOTED):
            # Reviewed content is not touched; only new listings are recorded.
            for link in links:
                venue.add_platform_link(link)
        # Rejected venues stay rejected; the touch keeps them from resurfacing.
        venue.last_seen_at = utcnow()

        changes = changelog.diff_fields(before, venue.snapshot())
        if changes:
            changelog.record_change(
                session,
                action="updated",
                collection=changelog.DISCOVERED_VENUES,
                document_id=venue.id,
                changes=changes,
                reason="merged duplicate scrape",
            )
        await session.flush()
        if venue.chain_id and venue.status == DISCOVERED:
            await self.matcher.refresh_chain_confidence(session, venue.chain_id)
        logger.info(
            "Merged scrape of '%s' into %s venue %s", candidate.name, venue.status, venue.id
        )
        return venue.id

    async def _merge_production(
        self,
        session: AsyncSession,
        venue_id: uuid.UUID,
        candidate: DiscoveredVenueCandidate,
    ) -> uuid.UUID:
        venue = await session.get(Venue, venue_id)
        platforms = list(venue.delivery_platforms or [])
        known = {p["platform"] for p in platforms}
        added = [p.model_dump() for p in candidate.delivery_platforms if p.platform not in known]
        if added:
            venue.delivery_platforms = platforms + added
            changelog.record_change(
                session,
                action="updated",
                collection=changelog.VENUES,
                document_id=venue.id,
                changes=[{
                    "field": "delivery_platforms",
                    "before": platforms,
                    "after": venue.delivery_platforms,
                }],
                reason="new delivery platform found by discovery",
            )
        logger.info(
            "Scrape of '%s' matches production venue %s (%d new platform link(s))",
            candidate.name, venue.id, len(added),
        )
        return venue.id

    # ------------------------------------------------------------------

    @staticmethod
    async def _record_strategy_use(session: AsyncSession, strategy_id: str) -> None:
        strategy = await session.get(DiscoveryStrategy, strategy_id)
        if strategy is None:
            session.add(DiscoveryStrategy(id=strategy_id, total_uses=1, last_used=utcnow()))
        else:
            await session.execute(
                update(DiscoveryStrategy)
                .where(DiscoveryStrategy.id == strategy_id)
                .values(total_uses=DiscoveryStrategy.total_uses + 1, last_used=utcnow())
            )
        await session.commit()
