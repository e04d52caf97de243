"""Error taxonomy for catalog synchronization and asset downloads."""

from typing import Optional


class CallPubsError(Exception):
    """Base class for all errors raised by callpubs."""


class NetworkFailure(CallPubsError):
    """Transport-level failure (DNS, connection reset, timeout)."""


class ServerError(CallPubsError):
    """The server answered with a non-success status code."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Server returned {status_code}" + (f" for {url}" if url else ""))


class MalformedPayload(CallPubsError):
    """The listing could not be parsed as JSON or failed validation."""


class StorageFailure(CallPubsError):
    """A write to the local catalog store failed."""


class FilesystemFailure(CallPubsError):
    """Copying or deleting a document file failed."""
