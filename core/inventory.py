"""
Inventory Repository - Storage for Listings, Fingerprints and Risk Scores

Provides storage and retrieval for the rows the pipeline authors.
This is an in-memory implementation with optional JSON file persistence.
Production should use a persistent database.

Writes are serialised by a lock so upserts behave as atomic conditional
writes even when several callers share one repository.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from core.models import (
    Fingerprint,
    Listing,
    ListingStatus,
    RiskScore,
    RiskStatus,
    SourceType,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class InventoryError(Exception):
    """Base class for inventory storage errors."""


class ListingNotFoundError(InventoryError):
    def __init__(self, listing_id: str):
        super().__init__(f"Listing not found: {listing_id}")
        self.listing_id = listing_id


class RiskScoreNotFoundError(InventoryError):
    def __init__(self, listing_id: str):
        super().__init__(f"Risk score not found for listing: {listing_id}")
        self.listing_id = listing_id


class CorruptRecordError(InventoryError):
    """A stored row could not be parsed."""

    def __init__(self, kind: str, listing_id: str, detail: str):
        super().__init__(f"Malformed {kind} record for listing {listing_id}: {detail}")
        self.kind = kind
        self.listing_id = listing_id


class DuplicateListingError(InventoryError):
    def __init__(self, source_url: str, existing_id: str):
        super().__init__(f"Listing with source_url {source_url} already exists ({existing_id})")
        self.source_url = source_url
        self.existing_id = existing_id


# =============================================================================
# Repository
# =============================================================================


class InventoryRepository:
    """
    Repository for listing rows and their 1:1 fingerprint and risk rows.

    Fingerprint rows are kept as raw dicts and parsed on read, so a damaged
    row surfaces as CorruptRecordError for the listing it belongs to.
    """

    def __init__(self, persist_path: Optional[Union[str, Path]] = None):
        """
        Initialise repository.

        Args:
            persist_path: Optional path to persist data to JSON file
        """
        self._listings: dict[str, Listing] = {}
        self._fingerprints: dict[str, dict] = {}
        self._risk_scores: dict[str, RiskScore] = {}
        self._lock = threading.RLock()
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _save_to_file(self) -> None:
        """Persist data to file."""
        if not self._persist_path:
            return

        data = {
            "listings": {lid: listing.to_dict() for lid, listing in self._listings.items()},
            "fingerprints": self._fingerprints,
            "risk_scores": {lid: score.to_dict() for lid, score in self._risk_scores.items()},
            "saved_at": datetime.utcnow().isoformat(),
        }

        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        """Load data from file."""
        try:
            data = json.loads(self._persist_path.read_text())
            for lid, row in data.get("listings", {}).items():
                self._listings[lid] = Listing.from_dict(row)
            self._fingerprints = dict(data.get("fingerprints", {}))
            for lid, row in data.get("risk_scores", {}).items():
                self._risk_scores[lid] = RiskScore.from_dict(row)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            # Start fresh rather than refuse to boot
            logger.warning("Could not load inventory data: %s", e)
            return
        logger.info(
            "Loaded inventory from %s (%d listings)",
            self._persist_path,
            len(self._listings),
        )

    # =========================================================================
    # Listings
    # =========================================================================

    def insert_listing(self, listing: Listing) -> Listing:
        """
        Insert a new listing.

        Raises:
            DuplicateListingError: If another listing has the same source_url
        """
        with self._lock:
            existing = self.find_by_source_url(listing.source_url)
            if existing:
                raise DuplicateListingError(listing.source_url, existing.id)
            self._listings[listing.id] = listing
            self._save_to_file()
            return listing

    def get_listing(self, listing_id: str) -> Optional[Listing]:
        return self._listings.get(listing_id)

    def require_listing(self, listing_id: str) -> Listing:
        listing = self._listings.get(listing_id)
        if listing is None:
            raise ListingNotFoundError(listing_id)
        return listing

    def list_listings(self) -> list[Listing]:
        return list(self._listings.values())

    def find_by_source_url(self, url: str) -> Optional[Listing]:
        """Find a listing whose canonical or fetched URL equals url."""
        for listing in self._listings.values():
            if listing.source_url == url or listing.fetched_url == url:
                return listing
        return None

    def find_by_content_hash(self, content_hash: str) -> Optional[Listing]:
        for listing in self._listings.values():
            if listing.content_hash == content_hash:
                return listing
        return None

    def find_fuzzy(
        self,
        area: str,
        bedrooms: int,
        price_min: float,
        price_max: float,
    ) -> Optional[Listing]:
        """
        Find an externally sourced listing in the same locality with the same
        bedroom count and a price inside [price_min, price_max].
        """
        area_lower = area.lower()
        for listing in self._listings.values():
            if listing.source_type == SourceType.NATIVE:
                continue
            if not listing.area or listing.area.lower() != area_lower:
                continue
            if listing.bedrooms != bedrooms:
                continue
            if listing.price_amount is None:
                continue
            if price_min <= listing.price_amount <= price_max:
                return listing
        return None

    def touch_last_checked(self, listing_id: str) -> Listing:
        with self._lock:
            listing = self.require_listing(listing_id)
            listing.last_checked_at = datetime.utcnow()
            self._save_to_file()
            return listing

    def update_listing_status(self, listing_id: str, status: ListingStatus) -> Listing:
        with self._lock:
            listing = self.require_listing(listing_id)
            listing.status = status
            listing.updated_at = datetime.utcnow()
            self._save_to_file()
            return listing

    def count_by_source_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for listing in self._listings.values():
            key = listing.source_type.value
            counts[key] = counts.get(key, 0) + 1
        return counts

    # =========================================================================
    # Fingerprints
    # =========================================================================

    def upsert_fingerprint(self, fingerprint: Fingerprint) -> Fingerprint:
        """Insert or replace the fingerprint for a listing (last write wins)."""
        with self._lock:
            self.require_listing(fingerprint.listing_id)
            self._fingerprints[fingerprint.listing_id] = fingerprint.to_dict()
            self._save_to_file()
            return fingerprint

    def get_fingerprint(self, listing_id: str) -> Optional[Fingerprint]:
        """
        Get the stored fingerprint for a listing.

        Raises:
            CorruptRecordError: If the stored row cannot be parsed
        """
        row = self._fingerprints.get(listing_id)
        if row is None:
            return None
        return self._parse_fingerprint(listing_id, row)

    def _parse_fingerprint(self, listing_id: str, row: object) -> Fingerprint:
        if not isinstance(row, dict):
            raise CorruptRecordError("fingerprint", listing_id, "row is not an object")
        try:
            return Fingerprint.from_dict(row)
        except (KeyError, TypeError, ValueError) as e:
            raise CorruptRecordError("fingerprint", listing_id, str(e)) from e

    def other_fingerprints(self, listing_id: str) -> Iterable[Fingerprint]:
        """
        Yield fingerprints of every other listing.

        Damaged rows belonging to other listings are skipped with a warning;
        they must not fail scoring for this listing.
        """
        for other_id, row in list(self._fingerprints.items()):
            if other_id == listing_id:
                continue
            try:
                yield self._parse_fingerprint(other_id, row)
            except CorruptRecordError as e:
                logger.warning("Skipping fingerprint: %s", e)

    def count_fingerprint_matches(self, listing_id: str, fingerprint_hash: str) -> int:
        """Count other listings sharing fingerprint_hash."""
        return sum(
            1
            for fp in self.other_fingerprints(listing_id)
            if fp.fingerprint_hash == fingerprint_hash
        )

    # =========================================================================
    # Risk Scores
    # =========================================================================

    def upsert_risk_score(self, score: RiskScore) -> RiskScore:
        """
        Insert or replace the risk score for a listing.

        created_at is preserved from an existing row; updated_at is stamped.
        """
        with self._lock:
            self.require_listing(score.listing_id)
            now = datetime.utcnow()
            existing = self._risk_scores.get(score.listing_id)
            score.created_at = existing.created_at if existing else now
            score.updated_at = now
            self._risk_scores[score.listing_id] = score
            self._save_to_file()
            return score

    def get_risk_score(self, listing_id: str) -> Optional[RiskScore]:
        return self._risk_scores.get(listing_id)

    def record_review(
        self,
        listing_id: str,
        status: RiskStatus,
        reviewed_by: str,
        review_notes: Optional[str],
    ) -> RiskScore:
        """
        Apply a manual review decision to an existing risk score.

        Raises:
            RiskScoreNotFoundError: If the listing has never been scored
        """
        with self._lock:
            score = self._risk_scores.get(listing_id)
            if score is None:
                raise RiskScoreNotFoundError(listing_id)
            now = datetime.utcnow()
            score.status = status
            score.reviewed_by = reviewed_by
            score.review_notes = review_notes
            score.reviewed_at = now
            score.updated_at = now
            self._save_to_file()
            return score

    def list_risk_scores(self, statuses: Optional[set[RiskStatus]] = None) -> list[RiskScore]:
        """Risk scores filtered by status, highest score first."""
        scores = [
            s for s in self._risk_scores.values()
            if statuses is None or s.status in statuses
        ]
        return sorted(scores, key=lambda s: (s.risk_score, s.updated_at), reverse=True)


# =============================================================================
# Singleton Instance
# =============================================================================

_repository_instance: Optional[InventoryRepository] = None


def get_inventory_repository(persist_path: Optional[str] = None) -> InventoryRepository:
    """
    Get the inventory repository singleton.

    Args:
        persist_path: Optional path for persistence (only used on first call)
    """
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = InventoryRepository(persist_path or "data/inventory.json")
    return _repository_instance
