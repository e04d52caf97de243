"""The catalog synchronizer service object.

One :class:`CatalogSynchronizer` is built by the entry point and passed to
whatever needs it (CLI commands, a long-running daemon, tests). It owns the
HTTP session, the repository and the three collaborating services:

    UpdateChecker ──(listing changed)──▶ ListingReconciler ──▶ DownloadManager

After a successful sync it announces new publications and starts
automatic downloads according to the per-type preferences in
:class:`~callpubs.config.Settings`.
"""

import logging
from concurrent.futures import Future
from typing import Iterable, Optional

import requests

from callpubs.config import Settings
from callpubs.database.cursor_store import CursorStore, SyncCursor
from callpubs.database.repository import PublicationRepository
from callpubs.errors import StorageFailure
from callpubs.events import CatalogChanged, EventBus, PublicationAnnounced
from callpubs.services import http
from callpubs.services.download_service import DownloadManager, IntegrityReport
from callpubs.services.reconcile_service import ListingReconciler
from callpubs.services.update_service import UpdateChecker, UpdateOutcome, UpdateResult

logger = logging.getLogger(__name__)


class CatalogSynchronizer:
    """Keeps the local publication catalog in step with the remote listing."""

    def __init__(
        self,
        settings: Settings,
        repo: Optional[PublicationRepository] = None,
        session: Optional[requests.Session] = None,
        events: Optional[EventBus] = None,
    ):
        """Wire up the services.

        Args:
            settings: Application settings
            repo: Catalog repository (opened at ``settings.db_path`` if not provided)
            session: HTTP session shared by all requests
            events: Event bus observers subscribe to
        """
        self.settings = settings
        self.repo = repo or PublicationRepository(settings.db_path)
        self.session = session or http.build_session()
        self.events = events or EventBus()
        self.cursor_store = CursorStore(settings.cursor_path, settings.default_cursor)

        self.downloads = DownloadManager(self.repo, settings, self.session, self.events)
        self.reconciler = ListingReconciler(
            self.repo, self.cursor_store, self.downloads, settings.image_workers
        )
        self.checker = UpdateChecker(
            self.reconciler, self.cursor_store, self.session, settings.request_timeout
        )

    @property
    def cursor(self) -> SyncCursor:
        return self.cursor_store.load()

    def start(self) -> "Future[IntegrityReport]":
        """Process-start hook: run the integrity sweep in the background."""
        return self.downloads.validate_integrity_in_background()

    def check_for_updates(self, force: bool = False) -> UpdateOutcome:
        """Run one sync pass.

        Args:
            force: Skip the conditional HEAD check and fetch the listing

        Returns:
            The update outcome; new publications have already been announced
            and auto-downloads started when it is UPDATED
        """
        outcome = self.checker.fetch_listing() if force else self.checker.check_for_updates()
        if outcome.result is UpdateResult.UPDATED:
            self._remember_types()
            if outcome.new_ids:
                self.events.emit(CatalogChanged(tuple(outcome.new_ids)))
                self.process_new_publications(outcome.new_ids)
        return outcome

    def process_new_publications(self, publication_ids: Iterable[int]) -> list[int]:
        """Announce and auto-download new publications per type preferences.

        Returns:
            IDs whose automatic download was started
        """
        started = []
        for pub_id in publication_ids:
            pub = self.repo.find_by_id(pub_id)
            if pub is None or pub.type is None:
                continue
            if self.settings.notifications_enabled(pub.type):
                self.events.emit(PublicationAnnounced(pub.id, pub.title, pub.abstract))
            if self.settings.auto_download_enabled(pub.type):
                if self.downloads.download_document(pub.id):
                    started.append(pub.id)
        return started

    def _remember_types(self) -> None:
        """Give newly seen publication types default preferences."""
        try:
            types = self.repo.list_types()
        except StorageFailure as e:
            logger.warning("Could not read publication types: %s", e)
            return
        added = self.settings.ensure_type_defaults(types)
        if not added:
            return
        logger.info("New publication types: %s", ", ".join(added))
        try:
            self.settings.save_preferences()
        except OSError as e:
            logger.warning("Could not save type preferences: %s", e)

    # ── Per-publication actions ───────────────────────────────────────

    def download_document(self, publication_id: int) -> bool:
        return self.downloads.download_document(publication_id)

    def delete_local_copy(self, publication_id: int) -> bool:
        return self.downloads.delete_local_copy(publication_id)

    def validate_integrity(self) -> IntegrityReport:
        return self.downloads.validate_integrity()

    def set_notes(self, publication_id: int, notes: str) -> bool:
        """Save the reader's notes; sync passes never overwrite them."""
        try:
            return self.repo.set_notes(publication_id, notes)
        except StorageFailure as e:
            logger.error("Could not save notes for publication %s: %s", publication_id, e)
            return False

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until running downloads and background jobs finish."""
        return self.downloads.wait(timeout)

    def close(self) -> None:
        self.downloads.shutdown(wait=True)
        self.session.close()
