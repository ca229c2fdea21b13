"""Confidence scoring for discovered venues.

The score is the clamped sum of an ordered list of signed factors, so a
reviewer can always see why a venue landed where it did.  Scoring is a pure
function of the candidate and the match context.
"""

import re
from dataclasses import dataclass

from pad.catalog import GENERIC_DISH_CONFIDENCE, GENERIC_NAME_TERMS
from pad.config import get_settings
from pad.schemas import ConfidenceFactor, DiscoveredVenueCandidate

BASE_SCORE = 50

HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 40

HIGH_RATING = 4.0
LOW_RATING = 3.0
REVIEW_VOLUME = 50


@dataclass(frozen=True)
class ScoringContext:
    """What the matcher learned about a candidate before it is scored."""

    duplicate: bool = False  # another record already describes this venue
    chain_match: bool = False  # name matched a known or existing chain exactly


def confidence_bucket(score: int) -> str:
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def _is_generic_name(name: str) -> bool:
    tokens = [t for t in re.split(r"[\s\-&/,.]+", name.casefold()) if t]
    return bool(tokens) and all(t in GENERIC_NAME_TERMS for t in tokens)


class ConfidenceScorer:
    """Computes ``(confidence_score, confidence_factors)`` for a candidate."""

    def __init__(self, fallback_sku: str | None = None) -> None:
        self.fallback_sku = fallback_sku or get_settings().fallback_product_sku

    def factors(
        self,
        candidate: DiscoveredVenueCandidate,
        context: ScoringContext | None = None,
    ) -> list[ConfidenceFactor]:
        context = context or ScoringContext()
        out = [
            ConfidenceFactor(
                factor="base", score=BASE_SCORE,
                reason="Discovered on a delivery platform",
            )
        ]

        # --- Platform rating ---
        ratings = [p.rating for p in candidate.delivery_platforms if p.rating is not None]
        if ratings:
            best = max(ratings)
            if best >= HIGH_RATING:
                out.append(ConfidenceFactor(
                    factor="platform_rating", score=15,
                    reason=f"Platform rating >= {HIGH_RATING} ({best:.1f})",
                ))
            elif best < LOW_RATING:
                out.append(ConfidenceFactor(
                    factor="platform_rating", score=-10,
                    reason=f"Platform rating < {LOW_RATING} ({best:.1f})",
                ))

        reviews = sum(p.review_count or 0 for p in candidate.delivery_platforms)
        if reviews >= REVIEW_VOLUME:
            out.append(ConfidenceFactor(
                factor="review_volume", score=5,
                reason=f"{reviews} platform reviews",
            ))

        # --- Platform coverage ---
        if len(candidate.delivery_platforms) >= 2:
            out.append(ConfidenceFactor(
                factor="platform_coverage", score=10,
                reason=f"Listed on {len(candidate.delivery_platforms)} platforms",
            ))
        elif not ratings:
            out.append(ConfidenceFactor(
                factor="platform_coverage", score=-10,
                reason="Single unrated platform listing",
            ))

        # --- Products ---
        specific = list(candidate.planted_products)
        if candidate.uses_fallback_product:
            specific = [p for p in specific if p != self.fallback_sku]
        if specific:
            out.append(ConfidenceFactor(
                factor="product_match", score=15,
                reason=f"Specific product detected ({', '.join(sorted(specific))})",
            ))
        elif candidate.planted_products:
            out.append(ConfidenceFactor(
                factor="product_match", score=5,
                reason="Only a generic brand mention, using fallback product",
            ))
        else:
            out.append(ConfidenceFactor(
                factor="product_match", score=-20,
                reason="No planted product detected",
            ))

        if len(candidate.planted_products) >= 3:
            out.append(ConfidenceFactor(
                factor="product_variety", score=10,
                reason=f"{len(candidate.planted_products)} different products",
            ))

        # --- Dishes ---
        if len(candidate.dishes) >= 3:
            out.append(ConfidenceFactor(
                factor="dish_count", score=10,
                reason=f"{len(candidate.dishes)} dishes with planted",
            ))
        elif candidate.dishes:
            out.append(ConfidenceFactor(
                factor="dish_count", score=5,
                reason=f"{len(candidate.dishes)} dish(es) with planted",
            ))

        # --- Matcher context ---
        if context.chain_match:
            out.append(ConfidenceFactor(
                factor="chain_match", score=10,
                reason=f"Name matches chain {candidate.chain_name or ''}".rstrip(),
            ))
        if context.duplicate:
            out.append(ConfidenceFactor(
                factor="corroborated", score=5,
                reason="Independently found by another scrape",
            ))

        # --- Record quality ---
        address = candidate.address
        if address.street and address.postal_code:
            out.append(ConfidenceFactor(
                factor="address_complete", score=5,
                reason="Street and postal code present",
            ))
        if candidate.coordinates is None:
            out.append(ConfidenceFactor(
                factor="no_coordinates", score=-5,
                reason="No coordinates",
            ))
        if _is_generic_name(candidate.name):
            out.append(ConfidenceFactor(
                factor="generic_name", score=-15,
                reason=f"Name '{candidate.name}' is only generic terms",
            ))

        return out

    def score(
        self,
        candidate: DiscoveredVenueCandidate,
        context: ScoringContext | None = None,
    ) -> tuple[int, list[ConfidenceFactor]]:
        factors = self.factors(candidate, context)
        total = sum(f.score for f in factors)
        return max(0, min(100, total)), factors

    def rescore(self, venue, context: ScoringContext | None = None) -> None:
        """Recompute the score of a stored :class:`DiscoveredVenue` in place.

        When *context* is omitted the matcher flags recorded in the venue's
        current factors are carried over.
        """
        if context is None:
            recorded = {f["factor"] for f in venue.confidence_factors or []}
            context = ScoringContext(
                duplicate="corroborated" in recorded,
                chain_match="chain_match" in recorded,
            )
        score, factors = self.score(candidate_from_record(venue, self.fallback_sku), context)
        venue.confidence_score = score
        venue.confidence_factors = [f.model_dump() for f in factors]


def candidate_from_record(venue, fallback_sku: str) -> DiscoveredVenueCandidate:
    """Rebuild the scoring input from a stored discovered venue."""
    dishes = list(venue.dishes or [])
    uses_fallback = any(
        d.get("product") == fallback_sku and d.get("confidence") == GENERIC_DISH_CONFIDENCE
        for d in dishes
    ) and not any(
        d.get("product") == fallback_sku and d.get("confidence") != GENERIC_DISH_CONFIDENCE
        for d in dishes
    )
    return DiscoveredVenueCandidate(
        name=venue.name,
        address=venue.address,
        coordinates=venue.coordinates,
        delivery_platforms=venue.platform_links(),
        planted_products=list(venue.planted_products or []),
        dishes=dishes,
        is_chain=venue.is_chain,
        chain_name=venue.chain_name,
        uses_fallback_product=uses_fallback,
    )
