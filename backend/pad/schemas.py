"""Pydantic shapes shared by the pipeline services and the API.

These are the strict internal types: per-platform scrape shapes never get past
:mod:`pad.services.normalizer`, everything downstream sees only the models
defined here.
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator

from pad.catalog import DeliveryPlatform


class Address(BaseModel):
    street: str | None = None
    city: str
    postal_code: str | None = None
    country: str = Field(min_length=2, max_length=2)

    @field_validator("country")
    @classmethod
    def upper_country(cls, value: str) -> str:
        return value.upper()


class AddressUpdate(BaseModel):
    """Partial address; omitted keys keep their stored value."""

    street: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = Field(default=None, min_length=2, max_length=2)

    model_config = {"extra": "forbid"}

    @field_validator("country")
    @classmethod
    def upper_country(cls, value: str | None) -> str | None:
        return value.upper() if value else value


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class PlatformLink(BaseModel):
    platform: DeliveryPlatform
    url: str
    rating: float | None = Field(default=None, ge=0, le=5)
    review_count: int | None = Field(default=None, ge=0)


class DishCandidate(BaseModel):
    name: str = Field(min_length=1)
    price: str | None = None  # platform-native formatting, e.g. "CHF 18.90"
    product: str
    description: str | None = None
    confidence: int | None = Field(default=None, ge=0, le=100)
    image_url: str | None = None


class ConfidenceFactor(BaseModel):
    factor: str
    score: int  # signed contribution
    reason: str


def _unique_platforms(links: list[PlatformLink] | None) -> list[PlatformLink] | None:
    if links is None:
        return links
    seen: set[str] = set()
    for link in links:
        if link.platform in seen:
            raise ValueError(f"duplicate delivery platform '{link.platform}'")
        seen.add(link.platform)
    return links


class DiscoveredVenueCandidate(BaseModel):
    """A normalized, not yet stored, scraped venue."""

    name: str
    address: Address
    coordinates: Coordinates | None = None
    delivery_platforms: list[PlatformLink] = Field(min_length=1)
    planted_products: list[str] = Field(default_factory=list)
    dishes: list[DishCandidate] = Field(default_factory=list)
    is_chain: bool = False
    chain_name: str | None = None
    uses_fallback_product: bool = False
    discovered_by_strategy_id: str | None = None
    discovered_by_query: str | None = None

    @field_validator("delivery_platforms")
    @classmethod
    def check_unique_platforms(cls, value):
        return _unique_platforms(value)


class VenueUpdate(BaseModel):
    """Reviewer edits applied during verify / update-and-verify.

    Scalar fields overwrite, ``address`` merges key by key, and
    ``dishes`` / ``delivery_platforms`` / ``planted_products`` replace the
    stored list wholesale.
    """

    name: str | None = Field(default=None, min_length=1)
    address: AddressUpdate | None = None
    coordinates: Coordinates | None = None
    is_chain: bool | None = None
    chain_id: str | None = None
    chain_name: str | None = None
    delivery_platforms: list[PlatformLink] | None = Field(default=None, min_length=1)
    planted_products: list[str] | None = None
    dishes: list[DishCandidate] | None = None

    model_config = {"extra": "forbid"}

    @field_validator("delivery_platforms")
    @classmethod
    def check_unique_platforms(cls, value):
        return _unique_platforms(value)


@dataclass(frozen=True, slots=True)
class ReviewFilter:
    """Query parameters for the review listing."""

    status: str | None = None
    country: str | None = None
    platform: str | None = None
    chain_id: str | None = None
    min_confidence: int | None = None
    max_confidence: int | None = None
    limit: int = 50
    offset: int = 0
