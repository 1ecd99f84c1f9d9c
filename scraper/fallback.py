"""
Fallback extractor.

Recovers listing data from page metadata and text patterns when a page has
no usable structured data. Heuristics live in rule tables (field, pattern,
priority) so they can be tested and extended without touching control flow.
"""

import re
from dataclasses import dataclass
from typing import Final, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from core.models import ExtractedListing, ExtractionMethod
from scraper.base import BaseExtractor


# =============================================================================
# Rule Tables
# =============================================================================

@dataclass(frozen=True)
class MetaRule:
    """Read field from the first element matching selector."""

    field: str
    selector: str
    attribute: Optional[str]  # None reads the element text
    priority: int


@dataclass(frozen=True)
class PatternRule:
    """Recover field from free text with a regex; group 1 holds the value."""

    field: str
    pattern: re.Pattern
    priority: int
    currency: Optional[str] = None
    min_value: int = 0
    max_value: Optional[int] = None


META_RULES: Final[tuple[MetaRule, ...]] = (
    MetaRule("title", 'meta[property="og:title"]', "content", 1),
    MetaRule("title", 'meta[name="twitter:title"]', "content", 2),
    MetaRule("title", "title", None, 3),
    MetaRule("description", 'meta[property="og:description"]', "content", 1),
    MetaRule("description", 'meta[name="twitter:description"]', "content", 2),
    MetaRule("description", 'meta[name="description"]', "content", 3),
    MetaRule("image", 'meta[property="og:image"]', "content", 1),
    MetaRule("image", 'meta[name="twitter:image"]', "content", 2),
    MetaRule("url", 'meta[property="og:url"]', "content", 1),
)

_AMOUNT = r"(\d[\d,.']*)"

PRICE_RULES: Final[tuple[PatternRule, ...]] = (
    PatternRule("price", re.compile(r"€\s*" + _AMOUNT), 1, currency="EUR"),
    PatternRule("price", re.compile(r"\bEUR\s*" + _AMOUNT, re.I), 2, currency="EUR"),
    PatternRule("price", re.compile(_AMOUNT + r"\s*(?:€|EUR\b)", re.I), 3, currency="EUR"),
    PatternRule("price", re.compile(r"£\s*" + _AMOUNT), 4, currency="GBP"),
    PatternRule("price", re.compile(r"\bGBP\s*" + _AMOUNT, re.I), 5, currency="GBP"),
    PatternRule("price", re.compile(_AMOUNT + r"\s*GBP\b", re.I), 6, currency="GBP"),
    PatternRule("price", re.compile(r"\$\s*" + _AMOUNT), 7, currency="USD"),
    PatternRule("price", re.compile(r"\bUSD\s*" + _AMOUNT, re.I), 8, currency="USD"),
    PatternRule("price", re.compile(_AMOUNT + r"\s*USD\b", re.I), 9, currency="USD"),
)

ROOM_RULES: Final[tuple[PatternRule, ...]] = (
    PatternRule("bedrooms", re.compile(r"(\d+)\s*-?\s*(?:bedrooms?|beds?)\b", re.I), 1, max_value=20),
    PatternRule("bedrooms", re.compile(r"(\d+)\s*BR\b", re.I), 2, max_value=20),
    PatternRule("bathrooms", re.compile(r"(\d+)\s*-?\s*(?:bathrooms?|baths?)\b", re.I), 1, max_value=10),
    PatternRule("bathrooms", re.compile(r"(\d+)\s*BA\b", re.I), 2, max_value=10),
)

# Page regions whose text feeds the pattern rules
DOM_TEXT_SELECTORS: Final[dict[str, str]] = {
    "price": '.price, .property-price, [class*="price"]',
    "bedrooms": '.bedrooms, .beds, [class*="bedroom"]',
    "bathrooms": '.bathrooms, .baths, [class*="bathroom"]',
    "location": '.location, .address, [class*="location"]',
}

LISTING_IMAGE_SELECTOR: Final[str] = (
    'img[src*="property"], img[src*="listing"], img[data-src*="property"]'
)
MAX_PAGE_IMAGES: Final[int] = 10

MALTA_LOCALITIES: Final[tuple[str, ...]] = (
    "Sliema", "St Julians", "St Julian's", "Valletta", "Gzira", "Msida",
    "Swieqi", "Birkirkara", "Mosta", "Naxxar", "Mellieha", "Gozo",
    "Attard", "Balzan", "Lija", "Iklin", "San Gwann", "Pembroke",
    "Ta Xbiex", "Ta' Xbiex", "Floriana", "Pieta", "Marsascala",
    "Marsaxlokk", "Rabat", "Mdina", "Zebbug", "Siggiewi", "Zejtun",
    "Fgura", "Paola", "Tarxien", "Qormi", "Hamrun", "Marsa",
    "Victoria", "Xaghra", "Nadur", "Sannat", "Xewkija", "Qala",
)

DEFAULT_TITLE: Final[str] = "Untitled Listing"


# =============================================================================
# Extractor
# =============================================================================

class FallbackExtractor(BaseExtractor):
    """Meta tag and regex heuristics for pages without JSON-LD."""

    name = "fallback"

    def extract(self, html: str, source_url: str) -> Optional[ExtractedListing]:
        return extract_fallback(html, source_url)


def extract_fallback(html: str, source_url: str) -> Optional[ExtractedListing]:
    """
    Extract listing data from metadata and page text.

    Returns:
        ExtractedListing tagged meta (og:title present) or heuristic, or None
        when neither a price nor a bedroom count could be recovered.
    """
    soup = BeautifulSoup(html, "html.parser")

    meta = apply_meta_rules(soup, META_RULES)
    title = meta.get("title") or DEFAULT_TITLE
    description = meta.get("description")

    dom_text = {
        key: _select_text(soup, selector)
        for key, selector in DOM_TEXT_SELECTORS.items()
    }
    free_text = " ".join(filter(None, [title, description]))

    price, currency = extract_price(" ".join([free_text, dom_text["price"]]))
    bedrooms = extract_count("bedrooms", " ".join([free_text, dom_text["bedrooms"]]))
    bathrooms = extract_count("bathrooms", " ".join([free_text, dom_text["bathrooms"]]))
    area = match_locality(" ".join([free_text, dom_text["location"]]), source_url)

    if price is None and bedrooms is None:
        return None

    og_title = soup.select_one('meta[property="og:title"]')
    has_og_title = og_title is not None and bool((og_title.get("content") or "").strip())
    return ExtractedListing(
        title=title,
        description=description,
        price=price,
        currency=currency,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        area=area,
        address=None,  # not reliably recoverable from metadata
        images=collect_images(soup, meta, source_url),
        canonical_url=meta.get("url") or source_url,
        extraction_method=ExtractionMethod.META if has_og_title else ExtractionMethod.HEURISTIC,
    )


def apply_meta_rules(soup: BeautifulSoup, rules: tuple[MetaRule, ...]) -> dict[str, str]:
    """
    Resolve each field to its highest-priority non-empty value.

    A missing or blank element never overwrites an earlier hit.
    """
    values: dict[str, str] = {}
    for rule in sorted(rules, key=lambda r: r.priority):
        if rule.field in values:
            continue
        element = soup.select_one(rule.selector)
        if element is None:
            continue
        raw = element.get(rule.attribute) if rule.attribute else element.get_text()
        if isinstance(raw, str) and raw.strip():
            values[rule.field] = raw.strip()
    return values


def collect_images(soup: BeautifulSoup, meta: dict[str, str], source_url: str) -> list[str]:
    images: list[str] = []
    if meta.get("image"):
        images.append(urljoin(source_url, meta["image"]))
    twitter = soup.select_one('meta[name="twitter:image"]')
    if twitter is not None and twitter.get("content"):
        url = urljoin(source_url, twitter["content"])
        if url not in images:
            images.append(url)

    for img in soup.select(LISTING_IMAGE_SELECTOR)[:MAX_PAGE_IMAGES]:
        src = img.get("src") or img.get("data-src")
        if not src:
            continue
        url = urljoin(source_url, src)
        if url not in images:
            images.append(url)
    return images


def _select_text(soup: BeautifulSoup, selector: str) -> str:
    element = soup.select_one(selector)
    return element.get_text(" ", strip=True) if element is not None else ""


# =============================================================================
# Price
# =============================================================================

def parse_amount(raw: str) -> Optional[float]:
    """
    Parse a price string with locale-aware separators.

    - "1.200,00": comma after the last period, European format
    - "1,200.00": US format
    - "1200,50": a single comma followed by 1-2 digits is a decimal comma
    - "300.000" / "1.200.000": periods grouping thousands

    The last two rules read Maltese and European pages correctly where a
    plain US reading would not.
    """
    s = raw.replace("'", "").strip(",.")
    if not s:
        return None

    last_comma = s.rfind(",")
    last_period = s.rfind(".")

    if last_comma != -1 and last_period != -1:
        if last_comma > last_period:
            s = s.replace(".", "").replace(",", ".")
        else:
            s = s.replace(",", "")
    elif last_comma != -1:
        decimals = len(s) - last_comma - 1
        if s.count(",") == 1 and decimals in (1, 2):
            s = s.replace(",", ".")
        else:
            s = s.replace(",", "")
    elif last_period != -1:
        decimals = len(s) - last_period - 1
        if s.count(".") > 1 or decimals == 3:
            s = s.replace(".", "")

    try:
        return float(s)
    except ValueError:
        return None


def extract_price(
    text: str,
    rules: tuple[PatternRule, ...] = PRICE_RULES,
) -> tuple[Optional[float], str]:
    """First positive price matched by the rules, with its currency."""
    for rule in sorted(rules, key=lambda r: r.priority):
        for match in rule.pattern.finditer(text):
            price = parse_amount(match.group(1))
            if price is not None and price > 0:
                return price, rule.currency or "EUR"
    return None, "EUR"


# =============================================================================
# Rooms & Locality
# =============================================================================

def extract_count(
    field: str,
    text: str,
    rules: tuple[PatternRule, ...] = ROOM_RULES,
) -> Optional[int]:
    """First in-range count for field; out-of-range matches are skipped."""
    for rule in sorted((r for r in rules if r.field == field), key=lambda r: r.priority):
        for match in rule.pattern.finditer(text):
            value = int(match.group(1))
            if value < rule.min_value:
                continue
            if rule.max_value is not None and value > rule.max_value:
                continue
            return value
    return None


def _locality_slug(locality: str) -> str:
    return re.sub(r"\s+", "-", locality.lower().replace("'", ""))


def match_locality(
    text: str,
    source_url: str,
    localities: tuple[str, ...] = MALTA_LOCALITIES,
) -> Optional[str]:
    """Known locality named in the text, else in the URL path."""
    lowered = text.lower()
    for locality in localities:
        if re.search(r"\b" + re.escape(locality.lower()) + r"\b", lowered):
            return locality

    path = urlparse(source_url).path.lower()
    for locality in localities:
        slug = re.escape(_locality_slug(locality))
        if re.search(r"(?<![a-z])" + slug + r"(?![a-z])", path):
            return locality
    return None
