"""
Utility modules for the listing pipeline.
"""

from .formatting import format_currency, truncate
from .config import Config

__all__ = ["format_currency", "truncate", "Config"]
