"""Typed catalog events and a small subscription bus.

Subscribers register a callable, optionally restricted to one event type::

    bus = EventBus()
    bus.subscribe(on_progress, DownloadProgress)
    bus.emit(DownloadProgress(publication_id=7, fraction=0.5))

Events are delivered synchronously on the emitting thread (download events
arrive on worker threads). A subscriber that raises is logged and skipped.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogChanged:
    """New publications were added by a sync pass."""

    new_ids: tuple[int, ...]


@dataclass(frozen=True)
class DownloadFinished:
    publication_id: int


@dataclass(frozen=True)
class DownloadFailed:
    publication_id: int
    reason: str = ""


@dataclass(frozen=True)
class DownloadProgress:
    publication_id: int
    fraction: float


@dataclass(frozen=True)
class PublicationAnnounced:
    """A new publication whose type has notifications enabled."""

    publication_id: int
    title: str
    abstract: str


CatalogEvent = Union[
    CatalogChanged,
    DownloadFinished,
    DownloadFailed,
    DownloadProgress,
    PublicationAnnounced,
]
Subscriber = Callable[[CatalogEvent], None]


class EventBus:
    """Register/unregister observers and deliver events to them."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[tuple[Subscriber, Optional[type]]] = []

    def subscribe(self, callback: Subscriber, event_type: Optional[type] = None) -> Subscriber:
        """Register *callback* for all events, or only for *event_type*.

        Returns:
            The callback, so it can be used as a decorator or kept for unsubscribe
        """
        with self._lock:
            self._subscribers.append((callback, event_type))
        return callback

    def unsubscribe(self, callback: Subscriber) -> None:
        """Remove every registration of *callback*."""
        with self._lock:
            self._subscribers = [(cb, et) for cb, et in self._subscribers if cb is not callback]

    def emit(self, event: CatalogEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback, event_type in subscribers:
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed on %s", type(event).__name__)
