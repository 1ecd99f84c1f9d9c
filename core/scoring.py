"""
Risk scoring for ingested listings.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .fingerprint import Fingerprinter, hamming_distance
from .inventory import InventoryRepository
from .models import (
    Fingerprint,
    Listing,
    RiskLevel,
    RiskScore,
    RiskStatus,
    risk_level_for_score,
    risk_status_for_level,
)


logger = logging.getLogger(__name__)


DEFAULT_PHOTO_MATCH_DISTANCE = 4


@dataclass(frozen=True)
class RiskAssessment:
    """Read view of a listing's risk decision."""

    listing_id: str
    risk_score: int
    risk_level: RiskLevel
    status: RiskStatus
    reasons: List[str] = field(default_factory=list)
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    @classmethod
    def from_score(cls, score: RiskScore) -> "RiskAssessment":
        return cls(
            listing_id=score.listing_id,
            risk_score=score.risk_score,
            risk_level=score.risk_level,
            status=score.status,
            reasons=list(score.reasons),
            reviewed_by=score.reviewed_by,
            review_notes=score.review_notes,
            reviewed_at=score.reviewed_at,
        )

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "status": self.status.value,
            "reasons": list(self.reasons),
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }


class RiskScorer:
    """
    Scores listings for duplication and fraud risk.

    Scoring methodology (additive):
    - Duplicate fingerprint (+40): another listing has the same fingerprint
    - Photo reuse (+35): a photo matches one posted by someone else
    - Missing location (+10): no address and no locality
    - No photos (+15)
    - Price outlier (+20): below 10k or above 50m

    Level and status follow from the total: 70+ high/hold,
    40+ medium/review_required, else low/ok.
    """

    # Scoring weights
    WEIGHT_DUPLICATE_FINGERPRINT = 40
    WEIGHT_PHOTO_REUSE = 35
    WEIGHT_MISSING_LOCATION = 10
    WEIGHT_NO_PHOTOS = 15
    WEIGHT_PRICE_OUTLIER = 20

    # Price outlier bounds
    PRICE_MIN = 10_000
    PRICE_MAX = 50_000_000

    REASON_DUPLICATE_FINGERPRINT = "Duplicate fingerprint detected: similar listing already exists"
    REASON_PHOTO_REUSE = "Photo matches listing from different poster: possible stolen image"
    REASON_MISSING_LOCATION = "Missing location/address"
    REASON_NO_PHOTOS = "No photos provided"
    REASON_PRICE_OUTLIER = "Price appears to be an extreme outlier"

    def __init__(
        self,
        inventory: InventoryRepository,
        fingerprinter: Fingerprinter,
        enabled: bool = True,
        photo_match_distance: int = DEFAULT_PHOTO_MATCH_DISTANCE,
    ):
        """
        Initialize scorer.

        Args:
            inventory: Repository holding listings, fingerprints and scores.
            fingerprinter: Used when a listing has no stored fingerprint.
            enabled: Kill switch; a disabled scorer never writes.
            photo_match_distance: Max Hamming distance for two photos to match.
        """
        self.inventory = inventory
        self.fingerprinter = fingerprinter
        self.enabled = enabled
        self.photo_match_distance = photo_match_distance

    def score_listing(self, listing_id: str) -> Optional[RiskAssessment]:
        """
        Score a listing and upsert its risk row.

        Any previous review on the row is cleared.

        Returns:
            RiskAssessment, or None when scoring is disabled.

        Raises:
            ListingNotFoundError: If the listing does not exist
            CorruptRecordError: If the stored fingerprint cannot be parsed
        """
        if not self.enabled:
            logger.debug("Risk scoring disabled, skipping listing %s", listing_id)
            return None

        listing = self.inventory.require_listing(listing_id)
        fingerprint = self.inventory.get_fingerprint(listing_id)
        if fingerprint is None:
            fingerprint = self.fingerprinter.compute_fingerprint(listing_id)

        score = 0
        reasons: List[str] = []

        if self._has_duplicate_fingerprint(fingerprint):
            score += self.WEIGHT_DUPLICATE_FINGERPRINT
            reasons.append(self.REASON_DUPLICATE_FINGERPRINT)

        if self._has_reused_photo(listing, fingerprint):
            score += self.WEIGHT_PHOTO_REUSE
            reasons.append(self.REASON_PHOTO_REUSE)

        if not listing.address_text and not listing.area:
            score += self.WEIGHT_MISSING_LOCATION
            reasons.append(self.REASON_MISSING_LOCATION)

        if not listing.images:
            score += self.WEIGHT_NO_PHOTOS
            reasons.append(self.REASON_NO_PHOTOS)

        if self._is_price_outlier(listing.price_amount):
            score += self.WEIGHT_PRICE_OUTLIER
            reasons.append(self.REASON_PRICE_OUTLIER)

        level = risk_level_for_score(score)
        status = risk_status_for_level(level)

        stored = self.inventory.upsert_risk_score(RiskScore(
            listing_id=listing_id,
            risk_score=score,
            risk_level=level,
            status=status,
            reasons=reasons,
        ))

        logger.info(
            "Scored listing %s: score=%d level=%s status=%s reasons=%s",
            listing_id,
            score,
            level.value,
            status.value,
            reasons,
        )
        return RiskAssessment.from_score(stored)

    def get_risk_status(self, listing_id: str) -> Optional[RiskAssessment]:
        """Stored risk decision for a listing, or None if never scored."""
        score = self.inventory.get_risk_score(listing_id)
        return RiskAssessment.from_score(score) if score else None

    def _has_duplicate_fingerprint(self, fingerprint: Fingerprint) -> bool:
        return self.inventory.count_fingerprint_matches(
            fingerprint.listing_id,
            fingerprint.fingerprint_hash,
        ) > 0

    def _has_reused_photo(self, listing: Listing, fingerprint: Fingerprint) -> bool:
        """
        True if any photo is within photo_match_distance of a photo on a
        listing from a different poster. Unknown posters never match.
        """
        if not fingerprint.photo_hashes or listing.poster_id is None:
            return False

        for other in self.inventory.other_fingerprints(listing.id):
            if not other.photo_hashes:
                continue
            other_listing = self.inventory.get_listing(other.listing_id)
            if other_listing is None or other_listing.poster_id is None:
                continue
            if other_listing.poster_id == listing.poster_id:
                continue
            for mine in fingerprint.photo_hashes:
                for theirs in other.photo_hashes:
                    if self._photos_match(mine, theirs):
                        return True
        return False

    def _photos_match(self, hash_a: str, hash_b: str) -> bool:
        try:
            return hamming_distance(hash_a, hash_b) <= self.photo_match_distance
        except ValueError:
            # Not a hex hash; only identical values match
            return hash_a == hash_b

    def _is_price_outlier(self, price: Optional[float]) -> bool:
        if not price:
            return False
        return price < self.PRICE_MIN or price > self.PRICE_MAX
