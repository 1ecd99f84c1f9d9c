"""
Base extractor interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from core.models import ExtractedListing


class BaseExtractor(ABC):
    """Abstract base class for listing extraction strategies."""

    name: str = "base"

    @abstractmethod
    def extract(self, html: str, source_url: str) -> Optional[ExtractedListing]:
        """
        Extract listing data from a page.

        Args:
            html: Raw page HTML.
            source_url: URL the page was fetched from (after redirects).

        Returns:
            ExtractedListing, or None when this strategy found nothing usable.
        """
        pass


def extract_with(
    extractors: list[BaseExtractor],
    html: str,
    source_url: str,
) -> Optional[ExtractedListing]:
    """Run extractors in order and return the first hit."""
    for extractor in extractors:
        listing = extractor.extract(html, source_url)
        if listing is not None:
            return listing
    return None
