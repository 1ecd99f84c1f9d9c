"""
Scraper module for fetching and extracting third-party listing pages.

Available extractors:
- StructuredExtractor: schema.org JSON-LD blocks
- FallbackExtractor: Open Graph metadata and text heuristics
"""

from .base import BaseExtractor, extract_with
from .fetcher import (
    FetchError,
    FetchResult,
    PageFetcher,
    UnexpectedContentTypeError,
)
from .structured import StructuredExtractor, extract_structured
from .fallback import FallbackExtractor, extract_fallback

__all__ = [
    "BaseExtractor",
    "extract_with",
    "FetchError",
    "FetchResult",
    "PageFetcher",
    "UnexpectedContentTypeError",
    "StructuredExtractor",
    "extract_structured",
    "FallbackExtractor",
    "extract_fallback",
]
