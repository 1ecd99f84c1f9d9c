"""
Listing Pipeline - Core Business Logic

This module provides the link-out ingestion and risk pipeline:
1. Queue (discovered URLs + domain policies)
2. Normalisation (republication allow-list)
3. Dedupe (source URL, content hash, fuzzy match)
4. Fingerprinting (normalized fields + perceptual photo hashes)
5. Risk Scoring (additive, explainable)
6. Decisions (automated publication + admin override)
"""

from .models import (
    DomainPolicy,
    ExtractedListing,
    Fingerprint,
    Listing,
    ListingStatus,
    NormalizedListing,
    QueuedUrl,
    QueueStatus,
    RiskLevel,
    RiskScore,
    RiskStatus,
    SourceType,
)
from .inventory import (
    CorruptRecordError,
    DuplicateListingError,
    InventoryError,
    InventoryRepository,
    ListingNotFoundError,
    RiskScoreNotFoundError,
)
from .url_queue import UrlQueue
from .audit import AuditLog
from .normalizer import normalize
from .dedupe import DedupeEngine, DedupeResult
from .fingerprint import Fingerprinter, PhotoHasher
from .scoring import RiskAssessment, RiskScorer
from .decisions import Decision, OverrideResult, OverrideService

__all__ = [
    # Models
    "DomainPolicy",
    "ExtractedListing",
    "Fingerprint",
    "Listing",
    "ListingStatus",
    "NormalizedListing",
    "QueuedUrl",
    "QueueStatus",
    "RiskLevel",
    "RiskScore",
    "RiskStatus",
    "SourceType",
    # Storage
    "CorruptRecordError",
    "DuplicateListingError",
    "InventoryError",
    "InventoryRepository",
    "ListingNotFoundError",
    "RiskScoreNotFoundError",
    "UrlQueue",
    "AuditLog",
    # Pipeline stages
    "normalize",
    "DedupeEngine",
    "DedupeResult",
    "Fingerprinter",
    "PhotoHasher",
    "RiskAssessment",
    "RiskScorer",
    "Decision",
    "OverrideResult",
    "OverrideService",
]
