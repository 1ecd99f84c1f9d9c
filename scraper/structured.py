"""
Structured data extractor.

Parses schema.org JSON-LD blocks embedded in listing pages. Returning None
means "no usable structured data, try the fallback", not "the page is broken".
"""

import json
import logging
import re
from typing import Any, Final, Optional

from bs4 import BeautifulSoup

from core.models import ExtractedListing, ExtractionMethod
from scraper.base import BaseExtractor


logger = logging.getLogger(__name__)


# Schema.org types treated as a listing
LISTING_TYPES: Final[frozenset[str]] = frozenset({
    "RealEstateListing",
    "Apartment",
    "House",
    "SingleFamilyResidence",
    "Residence",
    "Product",
    "Place",
    "Accommodation",
})

CURRENCY_SYMBOLS: Final[dict[str, str]] = {
    "€": "EUR",
    "$": "USD",
    "£": "GBP",
}

DEFAULT_CURRENCY: Final[str] = "EUR"
DEFAULT_TITLE: Final[str] = "Untitled Listing"
SQFT_TO_SQM: Final[float] = 0.092903

_NON_NUMERIC = re.compile(r"[^0-9.]")
_CURRENCY_TOKEN = re.compile(r"([A-Z]{3}|[€$£])")


# =============================================================================
# Defensive parsers
# =============================================================================

def parse_int(value: Any) -> Optional[int]:
    """Parse an int from a number or leading-digit string; None on failure."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        match = re.match(r"\s*(-?\d+)", value)
        return int(match.group(1)) if match else None
    return None


def parse_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_price_value(value: Any) -> Optional[float]:
    """Price from a number or a string such as "€1,200" or "EUR 1200"."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value.replace(",", ""))
        try:
            price = float(cleaned)
        except ValueError:
            return None
        return price if price > 0 else None
    return None


def currency_from_text(text: str) -> Optional[str]:
    match = _CURRENCY_TOKEN.search(text)
    if not match:
        return None
    token = match.group(1)
    return CURRENCY_SYMBOLS.get(token, token)


# =============================================================================
# Extractor
# =============================================================================

class StructuredExtractor(BaseExtractor):
    """Extracts listings from schema.org JSON-LD."""

    name = "structured"

    def extract(self, html: str, source_url: str) -> Optional[ExtractedListing]:
        return extract_structured(html, source_url)


def extract_structured(html: str, source_url: str) -> Optional[ExtractedListing]:
    """
    Extract listing data from the first matching JSON-LD block.

    Args:
        html: Raw page HTML.
        source_url: Page URL, used when the block has no url of its own.

    Returns:
        ExtractedListing, or None if no block matched and parsed.
    """
    soup = BeautifulSoup(html, "html.parser")
    scripts = soup.find_all(
        "script",
        attrs={"type": lambda t: bool(t) and "ld+json" in t.lower()},
    )

    for script in scripts:
        text = script.string or script.get_text()
        if not text or not text.strip():
            continue
        try:
            data = json.loads(text)
        except ValueError:
            continue

        for candidate in find_listing_objects(data):
            try:
                return parse_schema_listing(candidate, source_url)
            except (AttributeError, TypeError, ValueError) as e:
                logger.debug("Skipping unparseable JSON-LD candidate on %s: %s", source_url, e)

    return None


def find_listing_objects(data: Any) -> list[dict]:
    """Collect listing-typed objects, descending into arrays and @graph."""
    if isinstance(data, list):
        found = []
        for item in data:
            found.extend(find_listing_objects(item))
        return found

    if not isinstance(data, dict):
        return []

    graph = data.get("@graph")
    if isinstance(graph, list):
        return find_listing_objects(graph)

    declared = data.get("@type")
    types = declared if isinstance(declared, list) else [declared]
    if any(isinstance(t, str) and t in LISTING_TYPES for t in types):
        return [data]
    return []


def parse_schema_listing(schema: dict, source_url: str) -> ExtractedListing:
    """Map a schema.org object onto the intermediate listing shape."""
    price, currency = parse_price(schema)
    area, address = parse_address(schema.get("address"))
    latitude, longitude = parse_geo(schema.get("geo"))

    bedrooms = schema.get("numberOfBedrooms")
    if bedrooms is None:
        bedrooms = schema.get("numberOfRooms")

    name = schema.get("name")
    description = schema.get("description")
    url = schema.get("url")

    return ExtractedListing(
        title=name.strip() if isinstance(name, str) and name.strip() else DEFAULT_TITLE,
        description=description if isinstance(description, str) and description else None,
        price=price,
        currency=currency,
        bedrooms=parse_int(bedrooms),
        bathrooms=parse_int(schema.get("numberOfBathroomsTotal")),
        area=area,
        address=address,
        size_sqm=parse_floor_size(schema.get("floorSize")),
        latitude=latitude,
        longitude=longitude,
        images=parse_images(schema),
        canonical_url=url if isinstance(url, str) and url else source_url,
        extraction_method=ExtractionMethod.STRUCTURED,
    )


def parse_price(schema: dict) -> tuple[Optional[float], str]:
    """
    Price and currency from offers, a bare price, or a nested price object.

    Offers win when they carry a usable price.
    """
    offers = schema.get("offers")
    if isinstance(offers, list):
        offers = next((o for o in offers if isinstance(o, dict)), None)
    if isinstance(offers, dict):
        price = parse_price_value(offers.get("price"))
        if price is not None:
            return price, offers.get("priceCurrency") or DEFAULT_CURRENCY

    raw = schema.get("price")
    if isinstance(raw, dict):
        return (
            parse_price_value(raw.get("price")),
            raw.get("priceCurrency") or DEFAULT_CURRENCY,
        )
    if isinstance(raw, str):
        currency = currency_from_text(raw) or schema.get("priceCurrency") or DEFAULT_CURRENCY
        return parse_price_value(raw), currency
    return parse_price_value(raw), schema.get("priceCurrency") or DEFAULT_CURRENCY


def parse_images(schema: dict) -> list[str]:
    images: list[str] = []
    for source in (schema.get("image"), schema.get("photo")):
        if isinstance(source, (str, dict)):
            source = [source]
        if not isinstance(source, list):
            continue
        for item in source:
            if isinstance(item, str):
                url = item
            elif isinstance(item, dict):
                url = item.get("url") or item.get("contentUrl")
            else:
                url = None
            if isinstance(url, str) and url and url not in images:
                images.append(url)
    return images


def parse_floor_size(floor_size: Any) -> Optional[int]:
    """Floor size in square metres, converting from square feet."""
    if not isinstance(floor_size, dict):
        return None
    value = parse_float(floor_size.get("value"))
    if value is None:
        return None

    unit_code = str(floor_size.get("unitCode") or "").upper()
    unit_text = str(floor_size.get("unitText") or "").lower()
    if unit_code == "FTK" or unit_text in ("ft", "sqft", "sq ft") or "feet" in unit_text:
        return round(value * SQFT_TO_SQM)
    return round(value)


def parse_address(address: Any) -> tuple[Optional[str], Optional[str]]:
    """
    Locality and full address text.

    A string address is split on commas; the second part is taken as the
    locality when present.
    """
    if isinstance(address, str) and address.strip():
        parts = [p.strip() for p in address.split(",") if p.strip()]
        area = parts[1] if len(parts) > 1 else parts[0]
        return area, address.strip()

    if isinstance(address, dict):
        parts = [
            address.get("streetAddress"),
            address.get("addressLocality"),
            address.get("addressRegion"),
            address.get("addressCountry"),
        ]
        parts = [p for p in parts if isinstance(p, str) and p]
        area = address.get("addressLocality") or address.get("addressRegion") or None
        return area, ", ".join(parts) or None

    return None, None


def parse_geo(geo: Any) -> tuple[Optional[float], Optional[float]]:
    if not isinstance(geo, dict):
        return None, None
    return parse_float(geo.get("latitude")), parse_float(geo.get("longitude"))
