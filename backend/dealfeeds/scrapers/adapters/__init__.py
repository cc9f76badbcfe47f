"""Marketplace client implementations."""

from .woot import WootFeedClient

__all__ = ["WootFeedClient"]
