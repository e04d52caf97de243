"""Data models."""

from callpubs.models.listing import PublicationListing, UpdateListing
from callpubs.models.publication import Publication, PublicationStatus, PublicationType

__all__ = [
    "Publication",
    "PublicationListing",
    "PublicationStatus",
    "PublicationType",
    "UpdateListing",
]
