"""
Utilities Package.

Provides URL normalization, multi-URL detection and query-parameter helpers.
"""

from .urls import (
    normalize_url,
    detect_multiple_urls,
    add_query_param,
)

__all__ = [
    "normalize_url",
    "detect_multiple_urls",
    "add_query_param",
]
