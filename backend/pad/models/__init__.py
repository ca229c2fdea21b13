"""SQLAlchemy models."""

from pad.models.changelog import ChangeLog
from pad.models.discovered_venue import DiscoveredPlatformLink, DiscoveredVenue
from pad.models.strategy import DiscoveryStrategy
from pad.models.venue import Dish, Venue

__all__ = [
    "ChangeLog",
    "DiscoveredPlatformLink",
    "DiscoveredVenue",
    "DiscoveryStrategy",
    "Dish",
    "Venue",
]
