"""Application services."""

from pad.services.ingestion import IngestionService
from pad.services.normalizer import CandidateNormalizer
from pad.services.promotion import PromotionWriter
from pad.services.review import ReviewService
from pad.services.scoring import ConfidenceScorer
from pad.services.venue_matcher import VenueMatcher

__all__ = [
    "CandidateNormalizer",
    "ConfidenceScorer",
    "IngestionService",
    "PromotionWriter",
    "ReviewService",
    "VenueMatcher",
]
