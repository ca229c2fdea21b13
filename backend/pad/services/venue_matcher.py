"""Venue deduplication and chain matching.

Decides whether a freshly normalized candidate is a venue we already know
(same name and city in the same country), another location of a chain we
already track, or something new.  Chain names are matched with rapidfuzz so
"tibits Bern" lands next to "tibits Zürich".
"""

import logging
import re
import unicodedata
import uuid
from dataclasses import dataclass, field
from typing import Literal

from rapidfuzz import fuzz
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pad.catalog import GENERIC_NAME_TERMS, KNOWN_CHAINS
from pad.config import get_settings
from pad.database import async_session, utcnow
from pad.errors import DedupAmbiguous
from pad.models import DiscoveredVenue, Venue
from pad.models.discovered_venue import DISCOVERED, REJECTED
from pad.schemas import DiscoveredVenueCandidate
from pad.services import changelog
from pad.services.scoring import ConfidenceScorer, ScoringContext

logger = logging.getLogger(__name__)

# Chain names shorter than this are too generic to fuzzy-match on.
MIN_CHAIN_NAME_LENGTH = 4

MatchKind = Literal["new", "merge", "chain_sibling"]


@dataclass(frozen=True, slots=True)
class MatchDecision:
    """Outcome of matching one candidate."""

    kind: MatchKind
    target_id: uuid.UUID | None = None
    target_store: Literal["discovered", "production"] | None = None
    chain_id: str | None = None
    chain_name: str | None = None
    chain_exact: bool = False

    @classmethod
    def new(cls, chain_name: str | None = None, exact: bool = False) -> "MatchDecision":
        return cls(kind="new", chain_name=chain_name, chain_exact=exact)


@dataclass
class ReconcileReport:
    groups: int = 0
    absorbed: int = 0
    survivors: list[uuid.UUID] = field(default_factory=list)


class VenueMatcher:
    """Matches candidates against discovered and production venues."""

    def __init__(self, fuzzy_threshold: int | None = None) -> None:
        self.fuzzy_threshold = fuzzy_threshold or get_settings().chain_fuzzy_threshold

    # ------------------------------------------------------------------
    # Text helpers
    # ------------------------------------------------------------------

    @staticmethod
    def match_key(text: str | None) -> str:
        """Casefold, strip accents and collapse whitespace."""
        if not text:
            return ""
        decomposed = unicodedata.normalize("NFKD", text.casefold())
        stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
        return re.sub(r"\s+", " ", stripped).strip()

    @classmethod
    def known_chain(cls, name: str) -> str | None:
        """Return the canonical chain name when *name* carries a known chain keyword."""
        key = cls.match_key(name)
        for keyword, canonical in KNOWN_CHAINS:
            if cls.match_key(keyword) in key:
                return canonical
        return None

    def chain_similarity(self, venue_name: str, chain_name: str) -> float:
        """Similarity (0-100) between a venue name and a chain name.

        A venue name that carries every token of the chain name plus a
        location suffix ("Vega Burger Luzern") scores 100.  The reverse does
        not: "Kitchen" is not a location of "Nooch Asian Kitchen".  Anything
        else is scored with ``token_sort_ratio`` so dropped words count against
        the match.
        """
        a = self.match_key(venue_name)
        b = self.match_key(chain_name)
        if not a or not b or len(b) < MIN_CHAIN_NAME_LENGTH:
            return 0.0
        chain_tokens = set(b.split())
        if chain_tokens <= GENERIC_NAME_TERMS:
            return 0.0
        if chain_tokens <= set(a.split()):
            return 100.0
        return fuzz.token_sort_ratio(a, b)

    # ------------------------------------------------------------------
    # Look-ups
    # ------------------------------------------------------------------

    async def _find_discovered(
        self, session: AsyncSession, candidate: DiscoveredVenueCandidate
    ) -> DiscoveredVenue | None:
        name_key = self.match_key(candidate.name)
        city_key = self.match_key(candidate.address.city)
        stmt = (
            select(DiscoveredVenue)
            .where(DiscoveredVenue.country == candidate.address.country)
            .order_by(DiscoveredVenue.created_at, DiscoveredVenue.id)
        )
        result = await session.execute(stmt)
        for venue in result.scalars():
            if self.match_key(venue.name) == name_key and self.match_key(venue.city) == city_key:
                return venue
        return None

    async def _find_production(
        self, session: AsyncSession, candidate: DiscoveredVenueCandidate
    ) -> Venue | None:
        name_key = self.match_key(candidate.name)
        city_key = self.match_key(candidate.address.city)
        stmt = (
            select(Venue)
            .where(Venue.country == candidate.address.country)
            .order_by(Venue.created_at, Venue.id)
        )
        result = await session.execute(stmt)
        for venue in result.scalars():
            if self.match_key(venue.name) == name_key and self.match_key(venue.city) == city_key:
                return venue
        return None

    async def _chains_in_country(self, session: AsyncSession, country: str) -> dict[str, str]:
        """``{chain_id: chain_name}`` for chains with a location in *country*."""
        stmt = (
            select(DiscoveredVenue.chain_id, DiscoveredVenue.chain_name)
            .where(
                DiscoveredVenue.country == country,
                DiscoveredVenue.chain_id.is_not(None),
                DiscoveredVenue.status != REJECTED,
            )
            .distinct()
        )
        result = await session.execute(stmt)
        chains: dict[str, str] = {}
        for chain_id, chain_name in result.all():
            if chain_name:
                chains.setdefault(chain_id, chain_name)
        return chains

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def classify(
        self, candidate: DiscoveredVenueCandidate, session: AsyncSession
    ) -> MatchDecision:
        """Classify *candidate*; raises :class:`DedupAmbiguous` on a chain tie."""
        existing = await self._find_discovered(session, candidate)
        if existing is not None:
            return MatchDecision(kind="merge", target_id=existing.id, target_store="discovered")

        live = await self._find_production(session, candidate)
        if live is not None:
            return MatchDecision(kind="merge", target_id=live.id, target_store="production")

        known = self.known_chain(candidate.name)
        detected = known or candidate.chain_name
        chains = await self._chains_in_country(session, candidate.address.country)

        scored: list[tuple[float, str, str]] = []
        for chain_id, chain_name in chains.items():
            if detected and self.match_key(detected) == self.match_key(chain_name):
                score = 100.0
            else:
                score = self.chain_similarity(candidate.name, chain_name)
            if score >= self.fuzzy_threshold:
                scored.append((score, chain_id, chain_name))

        if scored:
            best = max(s for s, _, _ in scored)
            top = [(cid, cname) for s, cid, cname in scored if s == best]
            if len(top) > 1:
                raise DedupAmbiguous(
                    f"'{candidate.name}' matches {len(top)} chains: "
                    + ", ".join(sorted(name for _, name in top))
                )
            chain_id, chain_name = top[0]
            exact = detected is not None and self.match_key(detected) == self.match_key(chain_name)
            return MatchDecision(
                kind="chain_sibling",
                chain_id=chain_id,
                chain_name=chain_name,
                chain_exact=exact,
            )

        return MatchDecision.new(chain_name=detected, exact=known is not None)

    async def match(
        self, candidate: DiscoveredVenueCandidate, session: AsyncSession
    ) -> MatchDecision:
        """Like :meth:`classify` but falls back to a new venue when ambiguous."""
        try:
            return await self.classify(candidate, session)
        except DedupAmbiguous as exc:
            logger.warning("Ambiguous chain match, storing as new venue: %s", exc.message)
            return MatchDecision.new()

    # ------------------------------------------------------------------
    # Chain confidence
    # ------------------------------------------------------------------

    @staticmethod
    async def refresh_chain_confidence(session: AsyncSession, chain_id: str) -> float | None:
        """Recompute ``chain_confidence`` as the mean of the siblings' scores.

        Only siblings still awaiting review are written, so reviewers never
        see a version bump on a venue they already decided on.
        """
        stmt = select(DiscoveredVenue).where(
            DiscoveredVenue.chain_id == chain_id,
            DiscoveredVenue.status != REJECTED,
        )
        result = await session.execute(stmt)
        siblings = list(result.scalars().all())
        if not siblings:
            return None

        mean = round(sum(v.confidence_score for v in siblings) / len(siblings) / 100, 4)
        for venue in siblings:
            if venue.status == DISCOVERED and venue.chain_confidence != mean:
                venue.chain_confidence = mean
        return mean

    # ------------------------------------------------------------------
    # Reconciliation of concurrent duplicates
    # ------------------------------------------------------------------

    async def reconcile_duplicates(
        self,
        *,
        dry_run: bool = False,
        session: AsyncSession | None = None,
    ) -> ReconcileReport:
        """Fold discovered duplicates of the same place into the oldest record.

        Two scrapers racing on the same venue can both insert it.  Survivors
        absorb the other records' platform links and dishes; the absorbed
        records are rejected as duplicates, never deleted.
        """
        close_session = False
        if session is None:
            session = async_session()
            close_session = True

        try:
            stmt = (
                select(DiscoveredVenue)
                .where(DiscoveredVenue.status == DISCOVERED)
                .order_by(DiscoveredVenue.created_at, DiscoveredVenue.id)
            )
            result = await session.execute(stmt)

            groups: dict[tuple[str, str, str], list[DiscoveredVenue]] = {}
            for venue in result.scalars():
                key = (venue.country, self.match_key(venue.name), self.match_key(venue.city))
                groups.setdefault(key, []).append(venue)

            report = ReconcileReport()
            scorer = ConfidenceScorer()
            touched_chains: set[str] = set()

            for (country, _, _), venues in groups.items():
                if len(venues) < 2:
                    continue
                survivor, *duplicates = venues
                report.groups += 1
                report.survivors.append(survivor.id)
                logger.info(
                    "Duplicate group in %s: '%s' keeps %s, absorbs %d",
                    country, survivor.name, survivor.id, len(duplicates),
                )
                if dry_run:
                    report.absorbed += len(duplicates)
                    continue

                before = survivor.snapshot()
                for duplicate in duplicates:
                    absorb(survivor, duplicate.platform_links(), duplicate.dishes or [])
                    reason = f"Duplicate of {survivor.id}"
                    changelog.record_change(
                        session,
                        action="updated",
                        collection=changelog.DISCOVERED_VENUES,
                        document_id=duplicate.id,
                        changes=[
                            {"field": "status", "before": duplicate.status, "after": REJECTED},
                            {"field": "rejection_reason", "before": None, "after": reason},
                        ],
                        reason="duplicate reconciliation",
                    )
                    duplicate.status = REJECTED
                    duplicate.rejection_reason = reason
                    if duplicate.chain_id:
                        touched_chains.add(duplicate.chain_id)
                    report.absorbed += 1

                scorer.rescore(survivor, ScoringContext(
                    duplicate=True,
                    chain_match=any(
                        f["factor"] == "chain_match" for f in survivor.confidence_factors or []
                    ),
                ))
                survivor.last_seen_at = utcnow()
                changelog.record_change(
                    session,
                    action="updated",
                    collection=changelog.DISCOVERED_VENUES,
                    document_id=survivor.id,
                    changes=changelog.diff_fields(before, survivor.snapshot()),
                    reason=f"absorbed {len(duplicates)} duplicate record(s)",
                )
                if survivor.chain_id:
                    touched_chains.add(survivor.chain_id)

            if dry_run:
                return report

            await session.flush()
            for chain_id in touched_chains:
                await self.refresh_chain_confidence(session, chain_id)
            await session.commit()
            logger.info(
                "Reconciliation finished: %d group(s), %d record(s) absorbed",
                report.groups, report.absorbed,
            )
            return report
        finally:
            if close_session:
                await session.close()


def absorb(venue: DiscoveredVenue, links: list[dict], dishes: list[dict]) -> bool:
    """Add platform links and dishes *venue* does not have yet.

    Dish identity is the case-insensitive dish name.  Returns ``True`` when
    anything was added.
    """
    changed = False
    for link in links:
        changed = venue.add_platform_link(link) or changed

    known = {d["name"].casefold() for d in venue.dishes or []}
    new_dishes = [d for d in dishes if d["name"].casefold() not in known]
    if new_dishes:
        venue.dishes = list(venue.dishes or []) + new_dishes
        changed = True

    products = list(venue.planted_products or [])
    for dish in new_dishes:
        if dish["product"] not in products:
            products.append(dish["product"])
    if products != list(venue.planted_products or []):
        venue.planted_products = products
        changed = True
    return changed
