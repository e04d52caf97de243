"""Remote listing models (the JSON served by the catalog endpoint)."""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from callpubs.errors import MalformedPayload
from callpubs.utils.text import parse_listing_date

logger = logging.getLogger(__name__)

_REQUIRED_STR_FIELDS = (
    "title",
    "abstract",
    "image_url",
    "publication_url",
    "date_published",
    "type",
)


@dataclass
class PublicationListing:
    """A single publication entry from the remote listing."""

    id: int
    title: str
    abstract: str
    date_published: date
    cover_image_url: str
    publication_url: str
    type: str
    similar: list[int] = field(default_factory=list)
    terms: str = ""

    @classmethod
    def from_json(cls, data: Any) -> Optional["PublicationListing"]:
        """Build a listing entry from decoded JSON.

        Returns:
            The entry, or None when a required field is missing or mistyped
        """
        if not isinstance(data, dict):
            return None

        pub_id = data.get("id")
        # bool is an int subclass; reject it explicitly
        if not isinstance(pub_id, int) or isinstance(pub_id, bool):
            return None
        if not all(isinstance(data.get(key), str) for key in _REQUIRED_STR_FIELDS):
            return None

        similar_raw = data.get("similar")
        similar: list[int] = []
        if isinstance(similar_raw, list):
            similar = [
                s for s in similar_raw
                if isinstance(s, int) and not isinstance(s, bool)
            ]

        terms = data.get("terms")
        return cls(
            id=pub_id,
            title=data["title"],
            abstract=data["abstract"],
            date_published=parse_listing_date(data["date_published"]),
            cover_image_url=data["image_url"],
            publication_url=data["publication_url"],
            type=data["type"],
            similar=similar,
            terms=terms if isinstance(terms, str) else "",
        )


@dataclass
class UpdateListing:
    """The whole listing document: service endpoint, messages and publications."""

    service: str = ""
    messages: list[str] = field(default_factory=list)
    publications: list[PublicationListing] = field(default_factory=list)
    skipped: int = 0

    @property
    def ids(self) -> set[int]:
        return {p.id for p in self.publications}

    @classmethod
    def from_bytes(cls, content: bytes) -> "UpdateListing":
        """Decode and parse a listing response body.

        Raises:
            MalformedPayload: If the body is not valid JSON or not an object
        """
        try:
            data = json.loads(content)
        except (ValueError, TypeError) as e:
            raise MalformedPayload(f"Listing is not valid JSON: {e}") from e
        return cls.from_json(data)

    @classmethod
    def from_json(cls, data: Any) -> "UpdateListing":
        """Parse a decoded listing document.

        Unparseable publication entries are skipped and counted in ``skipped``.

        Raises:
            MalformedPayload: If the document is not a JSON object
        """
        if not isinstance(data, dict):
            raise MalformedPayload(
                f"Listing must be a JSON object, got {type(data).__name__}"
            )

        service = data.get("service")
        raw_messages = data.get("messages")
        messages = (
            [m for m in raw_messages if isinstance(m, str)]
            if isinstance(raw_messages, list)
            else []
        )

        publications: list[PublicationListing] = []
        skipped = 0
        raw_pubs = data.get("publications")
        if isinstance(raw_pubs, list):
            for raw in raw_pubs:
                listing = PublicationListing.from_json(raw)
                if listing is None:
                    skipped += 1
                    continue
                publications.append(listing)

        if skipped:
            logger.warning("Skipped %d unparseable listing entries", skipped)

        return cls(
            service=service if isinstance(service, str) else "",
            messages=messages,
            publications=publications,
            skipped=skipped,
        )
