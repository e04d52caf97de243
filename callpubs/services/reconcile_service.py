"""Merge a remote listing into the local catalog."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from callpubs.database.cursor_store import CursorStore, SyncCursor
from callpubs.database.repository import PublicationRepository
from callpubs.errors import StorageFailure
from callpubs.models.listing import UpdateListing
from callpubs.services.download_service import DownloadManager
from callpubs.utils.text import is_valid_url

logger = logging.getLogger(__name__)


@dataclass
class ReconcileOutcome:
    """Result of one reconcile pass."""

    succeeded: bool
    new_publication_ids: list[int] = field(default_factory=list)
    deleted_ids: list[int] = field(default_factory=list)
    failed_ids: list[int] = field(default_factory=list)
    covers_fetched: int = 0
    messages: list[str] = field(default_factory=list)
    cursor: Optional[SyncCursor] = None

    @property
    def new_count(self) -> int:
        return len(self.new_publication_ids)


class ListingReconciler:
    """Creates, updates and deletes catalog records to match a listing."""

    def __init__(
        self,
        repo: PublicationRepository,
        cursor_store: CursorStore,
        downloads: DownloadManager,
        image_workers: int = 8,
    ):
        """Initialize reconciler.

        Args:
            repo: Catalog repository
            cursor_store: Where the sync cursor is persisted on success
            downloads: Used to fetch missing cover images
            image_workers: Parallel cover image fetches per pass
        """
        self.repo = repo
        self.cursor_store = cursor_store
        self.downloads = downloads
        self.image_workers = max(1, image_workers)

    def reconcile(self, listing: UpdateListing, last_update: str) -> ReconcileOutcome:
        """Merge *listing* into the catalog.

        Every entry is written in its own transaction; a failed entry fails
        the pass but does not undo the others. Publications absent from the
        listing are deleted only after every entry has been processed, and
        the cursor advances only when the whole pass succeeded.

        Args:
            listing: Parsed remote listing
            last_update: Cache validator of the response (its Date header)

        Returns:
            ReconcileOutcome with the IDs of newly created publications
        """
        outcome = ReconcileOutcome(succeeded=True, messages=list(listing.messages))
        logger.info("Processing %d listings", len(listing.publications))

        with ThreadPoolExecutor(
            max_workers=self.image_workers, thread_name_prefix="callpubs-cover"
        ) as executor:
            cover_futures = {}
            for entry in listing.publications:
                try:
                    is_new = self.repo.upsert_from_listing(entry)
                    needs_cover = not self.repo.has_cover_image(entry.id)
                except StorageFailure as e:
                    logger.error("Error writing publication %s to the catalog: %s", entry.id, e)
                    outcome.succeeded = False
                    outcome.failed_ids.append(entry.id)
                    continue

                if is_new:
                    outcome.new_publication_ids.append(entry.id)
                if needs_cover:
                    future = executor.submit(
                        self.downloads.download_cover_image, entry.id, entry.cover_image_url
                    )
                    cover_futures[future] = entry.id

            # Deletions only after every entry has been dispatched
            try:
                outcome.deleted_ids = self.repo.delete_missing(listing.ids)
            except StorageFailure as e:
                logger.error("Error removing unlisted publications: %s", e)
                outcome.succeeded = False

            for future in as_completed(cover_futures):
                try:
                    if future.result():
                        outcome.covers_fetched += 1
                except Exception:
                    logger.exception("Cover image fetch crashed for publication %s", cover_futures[future])

        if outcome.deleted_ids:
            logger.info("Removed %d unlisted publications: %s", len(outcome.deleted_ids), outcome.deleted_ids)
        for message in outcome.messages:
            logger.info("Server message: %s", message)

        if not outcome.succeeded:
            logger.warning(
                "Reconcile incomplete (%d failed entries); sync cursor not advanced",
                len(outcome.failed_ids),
            )
            return outcome

        current = self.cursor_store.load()
        service_url = listing.service if is_valid_url(listing.service) else current.service_url
        cursor = SyncCursor(service_url=service_url, last_update=last_update)
        try:
            self.cursor_store.save(cursor)
        except StorageFailure as e:
            logger.error("Catalog updated but the sync cursor was not saved: %s", e)
            outcome.succeeded = False
            return outcome

        outcome.cursor = cursor
        logger.info("Reconcile complete: %d new publications", outcome.new_count)
        return outcome
