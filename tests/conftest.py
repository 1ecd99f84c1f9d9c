"""
Shared fixtures for the pipeline test suite.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.audit import AuditLog
from core.inventory import InventoryRepository
from core.models import Listing, SourceType


class StubPhotoHasher:
    """Photo hasher that maps image URLs to fixed hashes without downloading."""

    def __init__(self, hashes: dict[str, str] | None = None):
        self.hashes = hashes or {}
        self.requested: list[str] = []

    def hash_photos(self, urls: list[str]) -> list[str]:
        self.requested.extend(urls)
        return [self.hashes[url] for url in urls if url in self.hashes]


@pytest.fixture
def inventory():
    """In-memory inventory repository."""
    return InventoryRepository()


@pytest.fixture
def audit_log():
    """In-memory audit log."""
    return AuditLog()


@pytest.fixture
def photo_hasher():
    return StubPhotoHasher()


@pytest.fixture
def make_listing(inventory):
    """Factory inserting listings with sensible defaults."""
    counter = {"n": 0}

    def _make(**overrides) -> Listing:
        counter["n"] += 1
        n = counter["n"]
        values = dict(
            title=f"2 Bedroom Apartment {n}",
            source_url=f"https://example.mt/listing/{n}",
            source_domain="example.mt",
            source_type=SourceType.LINKOUT,
            content_hash=f"hash-{n}",
            price_amount=300000.0,
            bedrooms=2,
            bathrooms=1,
            area="Sliema",
            address_text="Tower Road, Sliema",
            images=[f"https://example.mt/img/{n}.jpg"],
            poster_id="example.mt",
        )
        values.update(overrides)
        return inventory.insert_listing(Listing(**values))

    return _make
