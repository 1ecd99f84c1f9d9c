"""
Listing fingerprints.

A fingerprint is a normalized signature of a listing (title, address, price
band, source) plus perceptual hashes of its photos. Two listings with the
same fingerprint hash are probably the same property; photos within a small
Hamming distance are probably the same picture.
"""

import hashlib
import logging
import math
import re
from datetime import datetime
from io import BytesIO
from typing import Final, Optional

import requests
from PIL import Image, UnidentifiedImageError

from core.inventory import InventoryRepository
from core.models import Fingerprint
from scraper.fetcher import USER_AGENT


logger = logging.getLogger(__name__)


# Upper bounds (inclusive, EUR) for each price band
PRICE_BUCKETS: Final[tuple[tuple[float, str], ...]] = (
    (100_000, "under_100k"),
    (250_000, "100k_250k"),
    (500_000, "250k_500k"),
    (1_000_000, "500k_1m"),
    (2_000_000, "1m_2m"),
    (math.inf, "over_2m"),
)
UNKNOWN: Final[str] = "unknown"

# 0.01 degrees is roughly 1.1 km
GEO_CELL_PRECISION: Final[int] = 100

HASH_SIZE: Final[int] = 8
MAX_PHOTOS: Final[int] = 10
PHOTO_TIMEOUT_SECONDS: Final[float] = 10.0

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


# =============================================================================
# Field normalisation
# =============================================================================

def normalize_text(text: Optional[str]) -> Optional[str]:
    """Lowercase, strip non-alphanumerics, collapse whitespace."""
    if not text:
        return None
    normalized = _WHITESPACE.sub(" ", _NON_ALNUM.sub("", text.lower())).strip()
    return normalized or None


def price_bucket(price: Optional[float]) -> str:
    if price is None or price <= 0:
        return UNKNOWN
    for upper, label in PRICE_BUCKETS:
        if price <= upper:
            return label
    return UNKNOWN


def geo_cell(latitude: Optional[float], longitude: Optional[float]) -> str:
    """Grid cell id from coordinates rounded half-up to 0.01 degrees."""
    if latitude is None or longitude is None:
        return UNKNOWN
    lat_cell = math.floor(latitude * GEO_CELL_PRECISION + 0.5)
    lng_cell = math.floor(longitude * GEO_CELL_PRECISION + 0.5)
    return f"{lat_cell}_{lng_cell}"


def hash_string(text: str) -> str:
    """First 16 hex chars of SHA-256."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


# =============================================================================
# Photo hashing
# =============================================================================

def dhash(image: Image.Image, hash_size: int = HASH_SIZE) -> str:
    """
    Difference hash of an image as a hex string.

    Each bit records whether a pixel is brighter than its right neighbour on
    a (hash_size + 1) x hash_size greyscale thumbnail.
    """
    thumbnail = image.convert("L").resize(
        (hash_size + 1, hash_size),
        Image.Resampling.LANCZOS,
    )
    pixels = list(thumbnail.getdata())
    width = hash_size + 1

    value = 0
    for row in range(hash_size):
        for col in range(hash_size):
            left = pixels[row * width + col]
            right = pixels[row * width + col + 1]
            value = (value << 1) | (1 if left > right else 0)
    return f"{value:0{hash_size * hash_size // 4}x}"


def hamming_distance(hash_a: str, hash_b: str) -> int:
    """Number of differing bits between two hex hashes."""
    return bin(int(hash_a, 16) ^ int(hash_b, 16)).count("1")


class PhotoHasher:
    """Downloads listing photos and computes their perceptual hashes."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = PHOTO_TIMEOUT_SECONDS,
        max_photos: int = MAX_PHOTOS,
    ):
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self.timeout = timeout
        self.max_photos = max_photos

    def hash_url(self, url: str) -> Optional[str]:
        """Hash a single photo; None when it cannot be downloaded or decoded."""
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Could not download photo %s: %s", url, e)
            return None

        try:
            with Image.open(BytesIO(response.content)) as image:
                return dhash(image)
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
            logger.warning("Could not decode photo %s: %s", url, e)
            return None

    def hash_photos(self, urls: list[str]) -> list[str]:
        hashes = []
        for url in urls[: self.max_photos]:
            photo_hash = self.hash_url(url)
            if photo_hash is not None:
                hashes.append(photo_hash)
        return hashes


# =============================================================================
# Fingerprinter
# =============================================================================

class Fingerprinter:
    """Computes and stores fingerprints for inventory listings."""

    def __init__(
        self,
        inventory: InventoryRepository,
        photo_hasher: Optional[PhotoHasher] = None,
    ):
        self.inventory = inventory
        self.photo_hasher = photo_hasher or PhotoHasher()

    def compute_fingerprint(self, listing_id: str) -> Fingerprint:
        """
        Compute and upsert the fingerprint for a listing.

        Raises:
            ListingNotFoundError: If the listing does not exist
        """
        listing = self.inventory.require_listing(listing_id)

        title_norm = normalize_text(listing.title)
        address_norm = normalize_text(listing.address_text or listing.area)
        bucket = price_bucket(listing.price_amount)

        fingerprint_hash = hash_string("|".join([
            title_norm or "",
            address_norm or "",
            bucket,
            listing.source_domain or "",
        ]))

        fingerprint = Fingerprint(
            listing_id=listing.id,
            fingerprint_hash=fingerprint_hash,
            price_bucket=bucket,
            geo_cell=geo_cell(listing.latitude, listing.longitude),
            title_norm=title_norm,
            address_norm=address_norm,
            photo_hashes=tuple(self.photo_hasher.hash_photos(listing.images)),
            computed_at=datetime.utcnow(),
        )
        self.inventory.upsert_fingerprint(fingerprint)

        logger.info("Computed fingerprint %s for listing %s", fingerprint_hash, listing_id)
        return fingerprint
