"""Publication data model."""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class PublicationStatus(Enum):
    """Local download state of a publication's document."""

    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"


@dataclass(frozen=True)
class PublicationType:
    """A publication category (handbook, newsletter, ...)."""

    type: str


@dataclass
class Publication:
    """Represents a catalog publication with its local asset state."""

    id: int
    title: str
    publication_url: str
    date_published: date
    abstract: str = ""
    terms: str = ""
    notes: str = ""
    type: Optional[str] = None
    status: PublicationStatus = PublicationStatus.NOT_DOWNLOADED
    cover_image: Optional[bytes] = None

    # Derived from the similar_links edge set
    similar: list[int] = field(default_factory=list)

    @property
    def is_downloaded(self) -> bool:
        return self.status is PublicationStatus.DOWNLOADED

    @property
    def date_published_string(self) -> str:
        """Short display date, e.g. '05 Mar 17'."""
        return self.date_published.strftime("%d %b %y")
