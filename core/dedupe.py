"""
Dedupe engine.

Decides whether an incoming listing already exists in inventory. Checks run
in a fixed order and stop at the first hit:

1. source URL (canonical or fetched URL of an existing row)
2. content hash
3. fuzzy match: same locality and bedrooms, price inside a band
"""

import logging
import math
from dataclasses import dataclass
from typing import Final, Optional

from core.inventory import InventoryRepository
from core.models import DuplicateReason


logger = logging.getLogger(__name__)


PRICE_BAND_WIDTH: Final[int] = 10_000
PRICE_BAND_BELOW: Final[int] = 5_000
PRICE_BAND_ABOVE: Final[int] = 15_000


@dataclass(frozen=True)
class DedupeResult:
    is_duplicate: bool
    existing_id: Optional[str] = None
    reason: Optional[DuplicateReason] = None

    @classmethod
    def unique(cls) -> "DedupeResult":
        return cls(is_duplicate=False)


def price_band(price: float) -> tuple[float, float]:
    """Inclusive [min, max] price range treated as "the same price"."""
    base = math.floor(price / PRICE_BAND_WIDTH) * PRICE_BAND_WIDTH
    return base - PRICE_BAND_BELOW, base + PRICE_BAND_ABOVE


class DedupeEngine:
    """Duplicate detection against an inventory repository."""

    def __init__(self, inventory: InventoryRepository):
        self.inventory = inventory

    def check_duplicate(
        self,
        source_url: str,
        content_hash: str,
        area: Optional[str] = None,
        price: Optional[float] = None,
        bedrooms: Optional[int] = None,
    ) -> DedupeResult:
        """
        Check an incoming listing against inventory.

        The fuzzy stage is skipped unless area, a positive price and
        bedrooms are all known. Native listings are never fuzzy-matched.
        """
        existing = self.inventory.find_by_source_url(source_url)
        if existing:
            logger.debug("Duplicate found by URL: %s -> %s", source_url, existing.id)
            return DedupeResult(True, existing.id, DuplicateReason.SOURCE_URL)

        existing = self.inventory.find_by_content_hash(content_hash)
        if existing:
            logger.debug("Duplicate found by content hash: %s -> %s", content_hash, existing.id)
            return DedupeResult(True, existing.id, DuplicateReason.CONTENT_HASH)

        if area and price and price > 0 and bedrooms is not None:
            price_min, price_max = price_band(price)
            existing = self.inventory.find_fuzzy(area, bedrooms, price_min, price_max)
            if existing:
                logger.debug(
                    "Duplicate found by fuzzy match: %s/%d bed/%s -> %s",
                    area,
                    bedrooms,
                    price,
                    existing.id,
                )
                return DedupeResult(True, existing.id, DuplicateReason.FUZZY_MATCH)

        return DedupeResult.unique()

    def record_duplicate(self, existing_id: str) -> None:
        """Refresh last_checked_at on the row a duplicate resolved to."""
        self.inventory.touch_last_checked(existing_id)
