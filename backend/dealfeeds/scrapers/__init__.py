"""Upstream deal sources.

This package provides:
- The base source interface and the canonical DealRecord
- The Woot feed API client
- Utility modules for rate limiting, retries and normalization
- Scheduler for periodic refresh jobs
"""

from .base import BaseDealSource, DealRecord, Price, RangePrice, RawFeed, RawRecord, ScalarPrice

__all__ = [
    # Base classes
    "BaseDealSource",
    # Data structures
    "DealRecord",
    "Price",
    "RangePrice",
    "ScalarPrice",
    "RawFeed",
    "RawRecord",
]
