"""Text helpers for file naming, listing dates and URLs."""

from datetime import date, datetime
from email.utils import formatdate
from typing import Optional
from urllib.parse import urlparse

DEFAULT_DOCUMENT_EXTENSION = ".pdf"
LISTING_DATE_FORMAT = "%Y-%m-%d"


def sanitize_title(title: str) -> str:
    """Strip every character that is not alphanumeric, a hyphen or a space.

    Args:
        title: Publication title

    Returns:
        Sanitized title (may be empty)
    """
    return "".join(ch for ch in title if ch.isalnum() or ch in "- ")


def document_filename(title: str, extension: str = DEFAULT_DOCUMENT_EXTENSION) -> str:
    """Derive the local document filename from a publication title.

    >>> document_filename("Field Manual 3-0: Operations!")
    'Field Manual 3-0 Operations.pdf'

    Two titles that sanitize to the same string map to the same file.
    """
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    return f"{sanitize_title(title)}{extension}"


def parse_listing_date(value: Optional[str], default: Optional[date] = None) -> date:
    """Parse a ``yyyy-MM-dd`` listing date.

    Args:
        value: Date string from the listing
        default: Returned when *value* is missing or malformed (today if None)

    Returns:
        Parsed date
    """
    if value:
        try:
            return datetime.strptime(value.strip(), LISTING_DATE_FORMAT).date()
        except ValueError:
            pass
    return default or date.today()


def is_valid_url(url: Optional[str]) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def http_date_now() -> str:
    """Current time as an RFC 7231 HTTP-date (``Wed, 01 Feb 2017 01:35:58 GMT``)."""
    return formatdate(usegmt=True)
