"""Utility functions."""

from callpubs.utils.text import (
    document_filename,
    http_date_now,
    is_valid_url,
    parse_listing_date,
    sanitize_title,
)

__all__ = [
    "document_filename",
    "http_date_now",
    "is_valid_url",
    "parse_listing_date",
    "sanitize_title",
]
