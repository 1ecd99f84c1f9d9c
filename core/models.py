"""
Data models for the listing ingestion pipeline.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Final, Optional


# =============================================================================
# Enums
# =============================================================================


class QueueStatus(Enum):
    """Lifecycle of a discovered URL in the queue."""

    NEW = "new"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class ExtractionMethod(Enum):
    """How listing data was recovered from a page."""

    STRUCTURED = "structured"  # JSON-LD block
    META = "meta"  # Open Graph metadata present
    HEURISTIC = "heuristic"  # Page title + regex patterns only


class SourceType(Enum):
    """Where a listing row came from."""

    NATIVE = "native"  # Posted directly on the marketplace
    LINKOUT = "linkout"  # Third-party page, restricted republication
    PARTNER = "partner"  # Third-party page, full republication allowed


class ListingStatus(Enum):
    """Publication status of an inventory listing."""

    PENDING_REVIEW = "pending_review"
    PUBLISHED = "published"
    HOLD_FOR_REVIEW = "hold_for_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskStatus(Enum):
    """Risk decision gating publication."""

    OK = "ok"
    HOLD = "hold"
    REVIEW_REQUIRED = "review_required"


class DuplicateReason(Enum):
    SOURCE_URL = "source_url"
    CONTENT_HASH = "content_hash"
    FUZZY_MATCH = "fuzzy_match"


class FieldName(Enum):
    """Listing fields governed by a domain policy."""

    TITLE = "title"
    DESCRIPTION = "description"
    PRICE = "price"
    BEDROOMS = "bedrooms"
    BATHROOMS = "bathrooms"
    AREA = "area"
    ADDRESS = "address"
    IMAGES = "images"
    SIZE = "size"
    URL = "url"


# =============================================================================
# Constants
# =============================================================================

# Score thresholds for risk levels
RISK_THRESHOLD_HIGH: Final[int] = 70
RISK_THRESHOLD_MEDIUM: Final[int] = 40

ALL_FIELDS: Final[frozenset[FieldName]] = frozenset(FieldName)

# Minimal subset stored for sources that do not allow republication
DEFAULT_LINKOUT_FIELDS: Final[frozenset[FieldName]] = frozenset({
    FieldName.TITLE,
    FieldName.PRICE,
    FieldName.BEDROOMS,
    FieldName.BATHROOMS,
    FieldName.AREA,
    FieldName.URL,
})

LEVEL_TO_STATUS: Final[dict[RiskLevel, RiskStatus]] = {
    RiskLevel.HIGH: RiskStatus.HOLD,
    RiskLevel.MEDIUM: RiskStatus.REVIEW_REQUIRED,
    RiskLevel.LOW: RiskStatus.OK,
}

# Automated decision -> listing publication status
RISK_STATUS_TO_LISTING_STATUS: Final[dict[RiskStatus, ListingStatus]] = {
    RiskStatus.OK: ListingStatus.PUBLISHED,
    RiskStatus.REVIEW_REQUIRED: ListingStatus.PENDING_REVIEW,
    RiskStatus.HOLD: ListingStatus.HOLD_FOR_REVIEW,
}


def risk_level_for_score(score: int) -> RiskLevel:
    """Map a risk score onto its level via the fixed thresholds."""
    if score >= RISK_THRESHOLD_HIGH:
        return RiskLevel.HIGH
    if score >= RISK_THRESHOLD_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def risk_status_for_level(level: RiskLevel) -> RiskStatus:
    return LEVEL_TO_STATUS[level]


def parse_fields(values: Any) -> frozenset[FieldName]:
    """
    Parse a stored field allow-list.

    Unknown names are ignored. Anything that is not a list/set/tuple yields
    an empty set.
    """
    if not isinstance(values, (list, tuple, set, frozenset)):
        return frozenset()
    known = {f.value: f for f in FieldName}
    parsed = set()
    for value in values:
        name = value.value if isinstance(value, FieldName) else value
        if isinstance(name, str) and name in known:
            parsed.add(known[name])
    return frozenset(parsed)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Queue & Policy
# =============================================================================


@dataclass
class QueuedUrl:
    """A discovered URL waiting to be ingested."""

    url: str
    domain: str
    id: str = field(default_factory=new_id)
    discovered_at: datetime = field(default_factory=datetime.utcnow)
    status: QueueStatus = QueueStatus.NEW
    retry_count: int = 0
    last_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    lease_expires_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "domain": self.domain,
            "discovered_at": _iso(self.discovered_at),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "processed_at": _iso(self.processed_at),
            "lease_expires_at": _iso(self.lease_expires_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QueuedUrl":
        return cls(
            id=data["id"],
            url=data["url"],
            domain=data["domain"],
            discovered_at=_from_iso(data["discovered_at"]),
            status=QueueStatus(data["status"]),
            retry_count=data.get("retry_count", 0),
            last_error=data.get("last_error"),
            processed_at=_from_iso(data.get("processed_at")),
            lease_expires_at=_from_iso(data.get("lease_expires_at")),
        )


@dataclass(frozen=True)
class DomainPolicy:
    """Republication rules for a source domain."""

    domain: str
    allowed_to_republish: bool = False
    fields_allowed: frozenset[FieldName] = frozenset()
    allowed_to_fetch: bool = True
    notes: Optional[str] = None

    @property
    def effective_fields(self) -> frozenset[FieldName]:
        """Fields that may be stored for listings from this domain."""
        if self.allowed_to_republish:
            return ALL_FIELDS
        return self.fields_allowed or DEFAULT_LINKOUT_FIELDS

    @property
    def source_type(self) -> SourceType:
        return SourceType.PARTNER if self.allowed_to_republish else SourceType.LINKOUT

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "allowed_to_republish": self.allowed_to_republish,
            "fields_allowed": sorted(f.value for f in self.fields_allowed),
            "allowed_to_fetch": self.allowed_to_fetch,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainPolicy":
        return cls(
            domain=data["domain"],
            allowed_to_republish=bool(data.get("allowed_to_republish", False)),
            fields_allowed=parse_fields(data.get("fields_allowed")),
            allowed_to_fetch=bool(data.get("allowed_to_fetch", True)),
            notes=data.get("notes"),
        )


# =============================================================================
# Listings
# =============================================================================


@dataclass
class ExtractedListing:
    """
    Listing data recovered from a page.
    Intermediate format before normalisation; never persisted.
    """

    title: str
    canonical_url: str
    extraction_method: ExtractionMethod
    description: Optional[str] = None
    price: Optional[float] = None
    currency: str = "EUR"
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    area: Optional[str] = None
    address: Optional[str] = None
    size_sqm: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: list[str] = field(default_factory=list)


@dataclass
class NormalizedListing:
    """Extracted listing after redaction, ready for dedupe and insert."""

    title: str
    description: Optional[str]
    property_type: str
    price_amount: Optional[float]
    price_currency: str
    bedrooms: Optional[int]
    bathrooms: Optional[int]
    size_sqm: Optional[int]
    address_text: Optional[str]
    area: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    images: list[str]
    source_type: SourceType
    source_url: str
    source_domain: str
    content_hash: str
    extraction_method: ExtractionMethod


@dataclass
class Listing:
    """An inventory row."""

    title: str
    source_url: str
    source_domain: str
    source_type: SourceType
    content_hash: str
    id: str = field(default_factory=new_id)
    description: Optional[str] = None
    property_type: str = "other"
    price_amount: Optional[float] = None
    price_currency: str = "EUR"
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    size_sqm: Optional[int] = None
    address_text: Optional[str] = None
    area: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: list[str] = field(default_factory=list)
    poster_id: Optional[str] = None
    fetched_url: Optional[str] = None
    extraction_method: Optional[ExtractionMethod] = None
    status: ListingStatus = ListingStatus.PENDING_REVIEW
    discovered_at: datetime = field(default_factory=datetime.utcnow)
    last_checked_at: datetime = field(default_factory=datetime.utcnow)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_normalized(
        cls,
        normalized: NormalizedListing,
        fetched_url: Optional[str] = None,
        discovered_at: Optional[datetime] = None,
    ) -> "Listing":
        """Build an inventory row from a normalized listing."""
        now = datetime.utcnow()
        return cls(
            title=normalized.title,
            description=normalized.description,
            property_type=normalized.property_type,
            price_amount=normalized.price_amount,
            price_currency=normalized.price_currency,
            bedrooms=normalized.bedrooms,
            bathrooms=normalized.bathrooms,
            size_sqm=normalized.size_sqm,
            address_text=normalized.address_text,
            area=normalized.area,
            latitude=normalized.latitude,
            longitude=normalized.longitude,
            images=list(normalized.images),
            source_type=normalized.source_type,
            source_url=normalized.source_url,
            source_domain=normalized.source_domain,
            content_hash=normalized.content_hash,
            poster_id=normalized.source_domain,
            fetched_url=fetched_url,
            extraction_method=normalized.extraction_method,
            discovered_at=discovered_at or now,
            last_checked_at=now,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "property_type": self.property_type,
            "price_amount": self.price_amount,
            "price_currency": self.price_currency,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "size_sqm": self.size_sqm,
            "address_text": self.address_text,
            "area": self.area,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "images": list(self.images),
            "source_type": self.source_type.value,
            "source_url": self.source_url,
            "source_domain": self.source_domain,
            "content_hash": self.content_hash,
            "poster_id": self.poster_id,
            "fetched_url": self.fetched_url,
            "extraction_method": self.extraction_method.value if self.extraction_method else None,
            "status": self.status.value,
            "discovered_at": _iso(self.discovered_at),
            "last_checked_at": _iso(self.last_checked_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Listing":
        method = data.get("extraction_method")
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description"),
            property_type=data.get("property_type", "other"),
            price_amount=data.get("price_amount"),
            price_currency=data.get("price_currency", "EUR"),
            bedrooms=data.get("bedrooms"),
            bathrooms=data.get("bathrooms"),
            size_sqm=data.get("size_sqm"),
            address_text=data.get("address_text"),
            area=data.get("area"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            images=list(data.get("images") or []),
            source_type=SourceType(data["source_type"]),
            source_url=data["source_url"],
            source_domain=data["source_domain"],
            content_hash=data["content_hash"],
            poster_id=data.get("poster_id"),
            fetched_url=data.get("fetched_url"),
            extraction_method=ExtractionMethod(method) if method else None,
            status=ListingStatus(data["status"]),
            discovered_at=_from_iso(data["discovered_at"]),
            last_checked_at=_from_iso(data["last_checked_at"]),
            created_at=_from_iso(data["created_at"]),
            updated_at=_from_iso(data["updated_at"]),
        )


# =============================================================================
# Fingerprint & Risk
# =============================================================================


@dataclass(frozen=True)
class Fingerprint:
    """Normalized signature of a listing used for duplicate/fraud detection."""

    listing_id: str
    fingerprint_hash: str
    price_bucket: str
    geo_cell: str
    title_norm: Optional[str] = None
    address_norm: Optional[str] = None
    photo_hashes: tuple[str, ...] = ()
    computed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def norm_fields(self) -> dict[str, Optional[str]]:
        return {
            "title_norm": self.title_norm,
            "address_norm": self.address_norm,
            "price_bucket": self.price_bucket,
        }

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "fingerprint_hash": self.fingerprint_hash,
            "price_bucket": self.price_bucket,
            "geo_cell": self.geo_cell,
            "title_norm": self.title_norm,
            "address_norm": self.address_norm,
            "photo_hashes": list(self.photo_hashes),
            "computed_at": _iso(self.computed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Fingerprint":
        photo_hashes = data.get("photo_hashes") or []
        if not isinstance(photo_hashes, list):
            raise TypeError("photo_hashes must be a list")
        return cls(
            listing_id=data["listing_id"],
            fingerprint_hash=data["fingerprint_hash"],
            price_bucket=data["price_bucket"],
            geo_cell=data["geo_cell"],
            title_norm=data.get("title_norm"),
            address_norm=data.get("address_norm"),
            photo_hashes=tuple(str(h) for h in photo_hashes),
            computed_at=_from_iso(data["computed_at"]),
        )


@dataclass
class RiskScore:
    """Stored risk decision for a listing (one per listing)."""

    listing_id: str
    risk_score: int
    risk_level: RiskLevel
    status: RiskStatus
    reasons: list[str] = field(default_factory=list)
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "listing_id": self.listing_id,
            "risk_score": self.risk_score,
            "risk_level": self.risk_level.value,
            "status": self.status.value,
            "reasons": list(self.reasons),
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "reviewed_at": _iso(self.reviewed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RiskScore":
        return cls(
            listing_id=data["listing_id"],
            risk_score=int(data["risk_score"]),
            risk_level=RiskLevel(data["risk_level"]),
            status=RiskStatus(data["status"]),
            reasons=list(data.get("reasons") or []),
            reviewed_by=data.get("reviewed_by"),
            review_notes=data.get("review_notes"),
            reviewed_at=_from_iso(data.get("reviewed_at")),
            created_at=_from_iso(data["created_at"]),
            updated_at=_from_iso(data["updated_at"]),
        )
