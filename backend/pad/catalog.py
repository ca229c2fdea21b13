"""Reference tables shared by the normalizer, scorer and matcher.

Keyword and chain tables are ordered: the first matching entry wins, so more
specific keywords come before the generic ones they contain.
"""

from typing import Literal

# ---------------------------------------------------------------------------
# Delivery platforms & countries
# ---------------------------------------------------------------------------

DeliveryPlatform = Literal[
    "uber-eats",
    "just-eat",
    "lieferando",
    "wolt",
    "smood",
    "deliveroo",
    "glovo",
]

PLATFORMS: tuple[str, ...] = (
    "uber-eats",
    "just-eat",
    "lieferando",
    "wolt",
    "smood",
    "deliveroo",
    "glovo",
)

# Host fragments used to infer the platform of a bare URL.
PLATFORM_HOSTS: dict[str, str] = {
    "ubereats.com": "uber-eats",
    "just-eat.": "just-eat",
    "justeat.": "just-eat",
    "lieferando.": "lieferando",
    "thuisbezorgd.nl": "lieferando",
    "takeaway.com": "lieferando",
    "pyszne.pl": "lieferando",
    "wolt.com": "wolt",
    "smood.ch": "smood",
    "deliveroo.": "deliveroo",
    "glovoapp.com": "glovo",
}

SUPPORTED_COUNTRIES: set[str] = {"CH", "DE", "AT", "NL", "GB", "FR", "ES", "IT", "BE", "PL"}

COUNTRY_ALIASES: dict[str, str] = {
    "uk": "GB",
    "united kingdom": "GB",
    "great britain": "GB",
    "switzerland": "CH",
    "schweiz": "CH",
    "suisse": "CH",
    "svizzera": "CH",
    "germany": "DE",
    "deutschland": "DE",
    "austria": "AT",
    "österreich": "AT",
    "netherlands": "NL",
    "nederland": "NL",
    "france": "FR",
    "spain": "ES",
    "españa": "ES",
    "italy": "IT",
    "italia": "IT",
    "belgium": "BE",
    "belgië": "BE",
    "belgique": "BE",
    "poland": "PL",
    "polska": "PL",
}

# ---------------------------------------------------------------------------
# Product detection
# ---------------------------------------------------------------------------

# (keyword, sku) pairs matched as case-insensitive substrings.
PRODUCT_KEYWORDS: list[tuple[str, str]] = [
    ("planted.chicken tenders", "planted.chicken_tenders"),
    ("planted chicken tenders", "planted.chicken_tenders"),
    ("planted.chicken burger", "planted.chicken_burger"),
    ("planted chicken burger", "planted.chicken_burger"),
    ("planted.chicken", "planted.chicken"),
    ("planted chicken", "planted.chicken"),
    ("planted hähnchen", "planted.chicken"),
    ("planted haehnchen", "planted.chicken"),
    ("planted huhn", "planted.chicken"),
    ("planted.kebab", "planted.kebab"),
    ("planted kebab", "planted.kebab"),
    ("planted.schnitzel", "planted.schnitzel"),
    ("planted schnitzel", "planted.schnitzel"),
    ("planted.pulled", "planted.pulled"),
    ("planted pulled", "planted.pulled"),
    ("planted.steak", "planted.steak"),
    ("planted steak", "planted.steak"),
    ("planted.pastrami", "planted.pastrami"),
    ("planted pastrami", "planted.pastrami"),
    ("planted.duck", "planted.duck"),
    ("planted duck", "planted.duck"),
    ("planted.burger", "planted.burger"),
    ("planted burger", "planted.burger"),
]

# Brand mention without a product name; maps to the configured fallback SKU.
GENERIC_BRAND_KEYWORDS: tuple[str, ...] = ("planted",)

SPECIFIC_DISH_CONFIDENCE = 90
GENERIC_DISH_CONFIDENCE = 60

# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------

# Venue-name keyword -> canonical chain name.
KNOWN_CHAINS: list[tuple[str, str]] = [
    ("birdie birdie", "Birdie Birdie"),
    ("dean&david", "dean&david"),
    ("dean & david", "dean&david"),
    ("deanddavid", "dean&david"),
    ("beets&roots", "beets&roots"),
    ("beets & roots", "beets&roots"),
    ("beetsandroots", "beets&roots"),
    ("green club", "Green Club"),
    ("nooch", "Nooch Asian Kitchen"),
    ("rice up", "Rice Up!"),
    ("smash bro", "Smash Bro"),
    ("doen doen", "Doen Doen"),
    ("tibits", "tibits"),
    ("hiltl", "Hiltl"),
]

# Words that say nothing about a specific venue on their own.
GENERIC_NAME_TERMS: set[str] = {
    "restaurant", "restaurante", "ristorante", "bistro", "bistrot", "cafe",
    "café", "kitchen", "küche", "food", "foods", "imbiss", "grill", "pizza",
    "pizzeria", "kebab", "döner", "doner", "burger", "burgers", "bowl",
    "bowls", "vegan", "vegetarian", "express", "delivery", "take", "away",
    "takeaway", "street", "the", "and", "&", "-",
}
