"""Source utilities for rate limiting, retries and data normalization."""

from .rate_limiter import DomainRateLimiter, TokenBucket
from .normalizer import PriceNormalizer, canonical_category_name, normalize, parse_datetime, render_content
from .retry import http_retry, is_transient_http_error


__all__ = [
    # Rate limiting
    "DomainRateLimiter",
    "TokenBucket",
    # Normalization
    "PriceNormalizer",
    "canonical_category_name",
    "normalize",
    "parse_datetime",
    "render_content",
    # Retry
    "http_retry",
    "is_transient_http_error",
]
