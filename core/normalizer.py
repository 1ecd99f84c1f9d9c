"""
Listing normalizer.

Applies a domain's republication allow-list to an extracted listing and
derives property type and content hash. Redacted fields are nulled, never
dropped, so every normalized listing has the same shape.
"""

import hashlib
from typing import Final, Optional

from core.models import (
    ExtractedListing,
    FieldName,
    NormalizedListing,
    SourceType,
)
from utils.formatting import truncate


PLACEHOLDER_TITLE: Final[str] = "Property Listing"
MAX_TITLE_LENGTH: Final[int] = 100

# First match wins; order matters ("penthouse apartment" is an apartment)
PROPERTY_TYPE_KEYWORDS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("apartment", "flat"), "apartment"),
    (("penthouse",), "penthouse"),
    (("villa",), "villa"),
    (("house", "maisonette"), "house"),
)
DEFAULT_PROPERTY_TYPE: Final[str] = "other"


def infer_property_type(title: Optional[str]) -> str:
    """Property type from the first keyword table entry found in the title."""
    text = (title or "").lower()
    for keywords, property_type in PROPERTY_TYPE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return property_type
    return DEFAULT_PROPERTY_TYPE


def compute_content_hash(
    canonical_url: str,
    price: Optional[float],
    bedrooms: Optional[int],
    area: Optional[str],
) -> str:
    """MD5 over url|price|bedrooms|area; missing values hash as empty."""
    parts = [
        canonical_url,
        "" if price is None else _format_price(price),
        "" if bedrooms is None else str(bedrooms),
        area or "",
    ]
    return hashlib.md5("|".join(parts).encode("utf-8")).hexdigest()


def _format_price(price: float) -> str:
    # 300000.0 and 300000 must hash identically
    return str(int(price)) if float(price).is_integer() else str(price)


def normalize(
    extracted: ExtractedListing,
    domain: str,
    fields_allowed: frozenset[FieldName],
    source_type: SourceType = SourceType.LINKOUT,
) -> NormalizedListing:
    """
    Normalize an extracted listing under a field allow-list.

    Args:
        extracted: Listing data from an extractor.
        domain: Source domain.
        fields_allowed: Fields that may be stored; everything else is nulled.
        source_type: linkout, or partner for republishable domains.

    Returns:
        NormalizedListing with the content hash taken from the
        pre-redaction values.
    """
    def allowed(name: FieldName) -> bool:
        return name in fields_allowed

    title = extracted.title if allowed(FieldName.TITLE) and extracted.title else PLACEHOLDER_TITLE
    description = extracted.description if allowed(FieldName.DESCRIPTION) else None

    return NormalizedListing(
        title=truncate(title.strip(), MAX_TITLE_LENGTH),
        description=description,
        property_type=infer_property_type(extracted.title),
        price_amount=extracted.price if allowed(FieldName.PRICE) else None,
        price_currency=extracted.currency or "EUR",
        bedrooms=extracted.bedrooms if allowed(FieldName.BEDROOMS) else None,
        bathrooms=extracted.bathrooms if allowed(FieldName.BATHROOMS) else None,
        size_sqm=extracted.size_sqm if allowed(FieldName.SIZE) else None,
        address_text=extracted.address if allowed(FieldName.ADDRESS) else None,
        area=extracted.area if allowed(FieldName.AREA) else None,
        latitude=extracted.latitude if allowed(FieldName.ADDRESS) else None,
        longitude=extracted.longitude if allowed(FieldName.ADDRESS) else None,
        images=list(extracted.images) if allowed(FieldName.IMAGES) else [],
        source_type=source_type,
        source_url=extracted.canonical_url,
        source_domain=domain,
        content_hash=compute_content_hash(
            extracted.canonical_url,
            extracted.price,
            extracted.bedrooms,
            extracted.area,
        ),
        extraction_method=extracted.extraction_method,
    )
