"""Candidate normalizer.

Turns the loosely typed output of the platform scrapers into a strict
:class:`~pad.schemas.DiscoveredVenueCandidate`.  Each scraper emits its own
shape, tagged by ``source``; the per-platform shapes are declared here and go
no further.
"""

import logging
import re
import unicodedata
from typing import Annotated, Literal, Union
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from pad.catalog import (
    COUNTRY_ALIASES,
    GENERIC_BRAND_KEYWORDS,
    GENERIC_DISH_CONFIDENCE,
    PLATFORM_HOSTS,
    PLATFORMS,
    PRODUCT_KEYWORDS,
    SPECIFIC_DISH_CONFIDENCE,
)
from pad.config import get_settings
from pad.errors import MalformedCandidate
from pad.schemas import (
    Address,
    Coordinates,
    DiscoveredVenueCandidate,
    DishCandidate,
    PlatformLink,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Raw scraper shapes
# ---------------------------------------------------------------------------


class _Raw(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RawDish(_Raw):
    name: str | None = None
    description: str | None = None
    price: str | float | None = None
    product: str | None = None
    image_url: str | None = None


class RawPlatformLink(_Raw):
    platform: str | None = None
    url: str | None = None
    rating: float | None = None
    review_count: int | None = None


class RawAddress(_Raw):
    street: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None


class GenericScrape(_Raw):
    """The minimal scraper contract: name, address, platforms, dishes."""

    source: Literal["generic"] = "generic"
    name: str | None = None
    address: RawAddress | None = None
    coordinates: Coordinates | None = None
    delivery_platforms: list[RawPlatformLink] = Field(default_factory=list)
    dishes: list[RawDish] = Field(default_factory=list)
    chain_name: str | None = None


class _WoltCoordinates(_Raw):
    lat: float
    lon: float


class _WoltLocation(_Raw):
    coordinates: _WoltCoordinates | None = None


class _WoltRating(_Raw):
    score: float | None = None  # 0-10
    count: int | None = None


class _WoltVenue(_Raw):
    name: str | None = None
    slug: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    location: _WoltLocation | None = None
    rating: _WoltRating | None = None


class _WoltItem(_Raw):
    name: str | None = None
    description: str | None = None
    baseprice: int | None = None  # cents
    currency: str | None = None
    image: str | None = None


class WoltScrape(_Raw):
    source: Literal["wolt"]
    url: str | None = None
    venue: _WoltVenue
    items: list[_WoltItem] = Field(default_factory=list)


class _UberLocation(_Raw):
    address: str | None = None
    city: str | None = None
    postalCode: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class _UberRating(_Raw):
    ratingValue: float | None = None
    reviewCount: int | None = None


class _UberMenuItem(_Raw):
    title: str | None = None
    itemDescription: str | None = None
    price: str | None = None
    imageUrl: str | None = None


class UberEatsScrape(_Raw):
    source: Literal["uber-eats"]
    url: str | None = None
    title: str | None = None
    location: _UberLocation | None = None
    rating: _UberRating | None = None
    menu: list[_UberMenuItem] = Field(default_factory=list)


class _LieferandoAddress(_Raw):
    street: str | None = None
    city: str | None = None
    postcode: str | None = None
    country: str | None = None


class _LieferandoRestaurant(_Raw):
    name: str | None = None
    address: _LieferandoAddress | None = None


class _LieferandoRating(_Raw):
    average: float | None = None
    votes: int | None = None


class _LieferandoProduct(_Raw):
    name: str | None = None
    description: str | None = None
    price: float | None = None
    currency: str | None = None
    imageUrl: str | None = None


class LieferandoScrape(_Raw):
    source: Literal["lieferando"]
    url: str | None = None
    restaurant: _LieferandoRestaurant
    rating: _LieferandoRating | None = None
    products: list[_LieferandoProduct] = Field(default_factory=list)


RawCandidate = Annotated[
    Union[GenericScrape, WoltScrape, UberEatsScrape, LieferandoScrape],
    Field(discriminator="source"),
]

_raw_adapter: TypeAdapter = TypeAdapter(RawCandidate)

# Wolt puts ISO alpha-3 codes in its paths (wolt.com/en/che/zurich/...).
_WOLT_COUNTRIES: dict[str, str] = {
    "che": "CH", "deu": "DE", "aut": "AT", "nld": "NL", "gbr": "GB",
    "fra": "FR", "esp": "ES", "ita": "IT", "bel": "BE", "pol": "PL",
}

_TLD_COUNTRIES: dict[str, str] = {
    "ch": "CH", "de": "DE", "at": "AT", "nl": "NL", "uk": "GB",
    "fr": "FR", "es": "ES", "it": "IT", "be": "BE", "pl": "PL",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def canonical_url(url: str) -> str:
    """Lower-case scheme and host, drop query, fragment and trailing slash."""
    parts = urlsplit(url.strip())
    scheme = (parts.scheme or "https").lower()
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, parts.netloc.lower(), path, "", ""))


def platform_from_url(url: str) -> str | None:
    host = urlsplit(url).netloc.lower()
    for fragment, platform in PLATFORM_HOSTS.items():
        if fragment in host:
            return platform
    return None


def country_from_url(url: str | None) -> str | None:
    if not url:
        return None
    parts = urlsplit(url)
    for segment in parts.path.lower().split("/"):
        if segment in _WOLT_COUNTRIES:
            return _WOLT_COUNTRIES[segment]
    tld = parts.netloc.lower().rsplit(".", 1)[-1]
    return _TLD_COUNTRIES.get(tld)


def normalize_country(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()
    alias = COUNTRY_ALIASES.get(value.casefold())
    if alias:
        return alias
    if len(value) == 2 and value.isalpha():
        return value.upper()
    return None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = unicodedata.normalize("NFC", re.sub(r"\s+", " ", value)).strip()
    return value or None


def detect_products(text: str) -> list[str]:
    """Return SKUs whose keyword occurs in *text* (case-insensitive).

    A keyword is only counted when no longer keyword already claimed the
    same span, so "planted chicken tenders" does not also yield
    ``planted.chicken``.
    """
    haystack = text.casefold()
    found: list[str] = []
    for keyword, sku in PRODUCT_KEYWORDS:
        if keyword in haystack:
            if sku not in found:
                found.append(sku)
            haystack = haystack.replace(keyword, " ")
    return found


def mentions_brand(text: str) -> bool:
    haystack = text.casefold()
    return any(keyword in haystack for keyword in GENERIC_BRAND_KEYWORDS)


def _format_price(amount: float | None, currency: str | None) -> str | None:
    if amount is None:
        return None
    formatted = f"{amount:.2f}"
    return f"{currency} {formatted}" if currency else formatted


# ---------------------------------------------------------------------------
# Per-source flattening
# ---------------------------------------------------------------------------


def _flatten(raw) -> GenericScrape:
    """Project a platform-specific shape onto the generic contract."""
    if isinstance(raw, GenericScrape):
        return raw

    if isinstance(raw, WoltScrape):
        venue = raw.venue
        coordinates = None
        if venue.location and venue.location.coordinates:
            coordinates = Coordinates(
                lat=venue.location.coordinates.lat,
                lng=venue.location.coordinates.lon,
            )
        rating = venue.rating.score / 2 if venue.rating and venue.rating.score is not None else None
        url = raw.url or (f"https://wolt.com/venue/{venue.slug}" if venue.slug else None)
        return GenericScrape(
            name=venue.name,
            address=RawAddress(
                street=venue.address,
                city=venue.city,
                country=venue.country or country_from_url(url),
            ),
            coordinates=coordinates,
            delivery_platforms=[
                RawPlatformLink(
                    platform="wolt",
                    url=url,
                    rating=rating,
                    review_count=venue.rating.count if venue.rating else None,
                )
            ] if url else [],
            dishes=[
                RawDish(
                    name=item.name,
                    description=item.description,
                    price=_format_price(
                        item.baseprice / 100 if item.baseprice is not None else None,
                        item.currency,
                    ),
                    image_url=item.image,
                )
                for item in raw.items
            ],
        )

    if isinstance(raw, UberEatsScrape):
        location = raw.location or _UberLocation()
        coordinates = None
        if location.latitude is not None and location.longitude is not None:
            coordinates = Coordinates(lat=location.latitude, lng=location.longitude)
        return GenericScrape(
            name=raw.title,
            address=RawAddress(
                street=location.address,
                city=location.city,
                postal_code=location.postalCode,
                country=location.country or country_from_url(raw.url),
            ),
            coordinates=coordinates,
            delivery_platforms=[
                RawPlatformLink(
                    platform="uber-eats",
                    url=raw.url,
                    rating=raw.rating.ratingValue if raw.rating else None,
                    review_count=raw.rating.reviewCount if raw.rating else None,
                )
            ] if raw.url else [],
            dishes=[
                RawDish(
                    name=item.title,
                    description=item.itemDescription,
                    price=item.price,
                    image_url=item.imageUrl,
                )
                for item in raw.menu
            ],
        )

    # Lieferando
    address = raw.restaurant.address or _LieferandoAddress()
    return GenericScrape(
        name=raw.restaurant.name,
        address=RawAddress(
            street=address.street,
            city=address.city,
            postal_code=address.postcode,
            country=address.country or country_from_url(raw.url),
        ),
        delivery_platforms=[
            RawPlatformLink(
                platform="lieferando",
                url=raw.url,
                rating=raw.rating.average if raw.rating else None,
                review_count=raw.rating.votes if raw.rating else None,
            )
        ] if raw.url else [],
        dishes=[
            RawDish(
                name=product.name,
                description=product.description,
                price=_format_price(product.price, product.currency),
                image_url=product.imageUrl,
            )
            for product in raw.products
        ],
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class CandidateNormalizer:
    """Pure transform from a raw scrape to a strict candidate."""

    def __init__(self, fallback_sku: str | None = None) -> None:
        self.fallback_sku = fallback_sku or get_settings().fallback_product_sku

    def parse(self, payload: dict):
        data = dict(payload)
        data.setdefault("source", "generic")
        try:
            return _raw_adapter.validate_python(data)
        except PydanticValidationError as exc:
            raise MalformedCandidate(
                f"unrecognised scrape shape: {exc.error_count()} error(s)"
            ) from exc

    def normalize(
        self,
        payload: dict,
        *,
        strategy_id: str | None = None,
        query: str | None = None,
    ) -> DiscoveredVenueCandidate:
        flat = _flatten(self.parse(payload))

        name = _clean(flat.name)
        if not name:
            raise MalformedCandidate("candidate has no name", field="name")

        raw_address = flat.address or RawAddress()
        city = _clean(raw_address.city)
        country = normalize_country(raw_address.country)
        if not city:
            raise MalformedCandidate(f"'{name}' has no city", field="address.city")
        if not country:
            raise MalformedCandidate(
                f"'{name}' has no usable country ({raw_address.country!r})",
                field="address.country",
            )

        links = self._normalize_links(flat.delivery_platforms)
        if not links:
            raise MalformedCandidate(
                f"'{name}' has no delivery platform link", field="delivery_platforms"
            )

        dishes, products, uses_fallback = self._normalize_dishes(flat.dishes)

        return DiscoveredVenueCandidate(
            name=name,
            address=Address(
                street=_clean(raw_address.street),
                city=city,
                postal_code=_clean(raw_address.postal_code),
                country=country,
            ),
            coordinates=flat.coordinates,
            delivery_platforms=links,
            planted_products=products,
            dishes=dishes,
            chain_name=_clean(flat.chain_name),
            uses_fallback_product=uses_fallback,
            discovered_by_strategy_id=strategy_id,
            discovered_by_query=query,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_links(raw_links: list[RawPlatformLink]) -> list[PlatformLink]:
        links: list[PlatformLink] = []
        seen: set[str] = set()
        for raw in raw_links:
            if not raw.url:
                continue
            platform = raw.platform or platform_from_url(raw.url)
            if platform not in PLATFORMS:
                logger.debug("Skipping link with unknown platform: %s", raw.url)
                continue
            if platform in seen:
                continue
            seen.add(platform)
            rating = raw.rating if raw.rating is not None and 0 <= raw.rating <= 5 else None
            review_count = raw.review_count if raw.review_count and raw.review_count > 0 else None
            links.append(
                PlatformLink(
                    platform=platform,
                    url=canonical_url(raw.url),
                    rating=rating,
                    review_count=review_count,
                )
            )
        return links

    def _normalize_dishes(
        self, raw_dishes: list[RawDish]
    ) -> tuple[list[DishCandidate], list[str], bool]:
        """Dishes, the venue's product set (every SKU any dish mentions) and the fallback flag."""
        dishes: list[DishCandidate] = []
        products: list[str] = []
        uses_fallback = False
        for raw in raw_dishes:
            name = _clean(raw.name)
            if not name:
                continue
            description = _clean(raw.description)
            text = f"{name} {description or ''}"

            product = _clean(raw.product)
            confidence = SPECIFIC_DISH_CONFIDENCE
            detected = detect_products(text)
            if not product:
                if detected:
                    product = detected[0]
                elif mentions_brand(text):
                    product = self.fallback_sku
                    confidence = GENERIC_DISH_CONFIDENCE
                    uses_fallback = True
                else:
                    continue

            price = raw.price
            if isinstance(price, float | int):
                price = _format_price(float(price), None)
            dishes.append(
                DishCandidate(
                    name=name,
                    price=_clean(price),
                    product=product,
                    description=description,
                    confidence=confidence,
                    image_url=_clean(raw.image_url),
                )
            )
            for sku in [product, *detected]:
                if sku not in products:
                    products.append(sku)
        if any(
            d.product == self.fallback_sku and d.confidence == SPECIFIC_DISH_CONFIDENCE
            for d in dishes
        ):
            uses_fallback = False
        return dishes, products, uses_fallback
