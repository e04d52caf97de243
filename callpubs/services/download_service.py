"""Asset downloads: document bodies, cover images and status integrity."""

import contextlib
import logging
import shutil
import tempfile
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import requests

from callpubs.config import Settings
from callpubs.database.repository import PublicationRepository
from callpubs.errors import CallPubsError, FilesystemFailure, NetworkFailure, StorageFailure
from callpubs.events import DownloadFailed, DownloadFinished, DownloadProgress, EventBus
from callpubs.models.publication import Publication, PublicationStatus
from callpubs.services import http
from callpubs.utils.text import document_filename, is_valid_url

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    """Publications whose status was reset by :meth:`DownloadManager.validate_integrity`."""

    orphaned_ids: list[int] = field(default_factory=list)
    zombie_ids: list[int] = field(default_factory=list)

    @property
    def repaired(self) -> int:
        return len(self.orphaned_ids) + len(self.zombie_ids)


class DownloadManager:
    """Drives document and cover image downloads and keeps status consistent.

    Document transfers run on a worker pool and are tracked as in-flight by
    their source URL, which is also how completions and progress are matched
    back to a publication. The manager never blocks the caller on a document
    transfer; use :meth:`wait` when a caller needs to.
    """

    def __init__(
        self,
        repo: PublicationRepository,
        settings: Settings,
        session: Optional[requests.Session] = None,
        events: Optional[EventBus] = None,
    ):
        """Initialize download manager.

        Args:
            repo: Catalog repository
            settings: Paths, timeouts and worker counts
            session: HTTP session (a new one is built if not provided)
            events: Bus for finished/failed/progress events
        """
        self.repo = repo
        self.settings = settings
        self.session = session or http.build_session()
        self.events = events or EventBus()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, settings.download_workers),
            thread_name_prefix="callpubs-download",
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, Optional[Future]] = {}
        self._background: list[Future] = []

    # ── Paths ─────────────────────────────────────────────────────────

    def document_path(self, publication: Publication) -> Path:
        """Local path of a publication's document body."""
        return self.settings.documents_dir / document_filename(
            publication.title, self.settings.document_extension
        )

    # ── Document downloads ────────────────────────────────────────────

    def download_document(self, publication_id: int) -> bool:
        """Start downloading a publication's document.

        Args:
            publication_id: Publication to download

        Returns:
            True if a transfer was started; False for an unknown publication,
            an invalid URL, a transfer already in flight or a failed catalog access
        """
        try:
            pub = self.repo.find_by_id(publication_id)
        except StorageFailure as e:
            logger.error("Could not read publication %s, download aborted: %s", publication_id, e)
            return False
        if pub is None:
            logger.warning("Requested publication %s does not exist", publication_id)
            return False
        url = pub.publication_url
        if not is_valid_url(url):
            logger.warning("Invalid document URL for publication %s: %r", publication_id, url)
            return False

        with self._lock:
            if url in self._in_flight:
                logger.info("Document for publication %s is already downloading", publication_id)
                return False
            self._in_flight[url] = None

        try:
            self.repo.set_status(publication_id, PublicationStatus.DOWNLOADING)
        except StorageFailure as e:
            logger.error("Could not set status for publication %s, download aborted: %s", publication_id, e)
            with self._lock:
                self._in_flight.pop(url, None)
            return False

        with self._lock:
            try:
                self._in_flight[url] = self._executor.submit(self._transfer, url)
                started = True
            except RuntimeError:
                # pool already shut down
                self._in_flight.pop(url, None)
                started = False
        if not started:
            logger.error("Download pool is shut down; publication %s not downloaded", publication_id)
            self._fail(url, "download pool is shut down")
            return False
        logger.info("Downloading document for publication %s from %s", publication_id, url)
        return True

    def in_flight_urls(self) -> set[str]:
        """Source URLs of the document transfers currently running."""
        with self._lock:
            return set(self._in_flight)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted transfer and background job has finished.

        Returns:
            True if everything finished within *timeout*
        """
        with self._lock:
            futures = [f for f in self._in_flight.values() if f is not None]
            futures.extend(self._background)
        if not futures:
            return True
        _, not_done = wait_futures(futures, timeout=timeout)
        with self._lock:
            self._background = [f for f in self._background if not f.done()]
        return not not_done

    def _transfer(self, url: str) -> None:
        """Worker: stream *url* to a staging file, then move it into place."""
        staging_path: Optional[Path] = None
        try:
            pub = self.repo.find_by_url(url)
            pub_id = pub.id if pub else None

            response = http.request(
                self.session, "GET", url, timeout=self.settings.request_timeout, stream=True
            )
            try:
                http.check_response(response)
                staging_path = self._stream_to_staging(response, pub_id)
            finally:
                response.close()

            self._complete(url, staging_path)
        except CallPubsError as e:
            logger.warning("Download of %s failed: %s", url, e)
            self._fail(url, str(e))
        except Exception as e:
            logger.exception("Unexpected error downloading %s", url)
            self._fail(url, str(e))
        finally:
            if staging_path is not None:
                staging_path.unlink(missing_ok=True)
            with self._lock:
                self._in_flight.pop(url, None)

    def _stream_to_staging(self, response: requests.Response, pub_id: Optional[int]) -> Path:
        """Write the response body to a staging file, emitting progress."""
        staging_dir = self.settings.staging_dir
        try:
            staging_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix="download-", dir=staging_dir)
        except OSError as e:
            raise FilesystemFailure(f"Cannot create staging file: {e}") from e
        staging_path = Path(name)

        try:
            total = int(response.headers.get("Content-Length") or 0)
        except ValueError:
            total = 0

        written = 0
        try:
            with open(fd, "wb") as f:
                for chunk in response.iter_content(chunk_size=self.settings.chunk_size):
                    if not chunk:
                        continue
                    f.write(chunk)
                    written += len(chunk)
                    if total > 0 and pub_id is not None:
                        self.events.emit(DownloadProgress(pub_id, min(written / total, 1.0)))
        except requests.RequestException as e:
            staging_path.unlink(missing_ok=True)
            raise NetworkFailure(f"Transfer interrupted: {e}") from e
        except OSError as e:
            staging_path.unlink(missing_ok=True)
            raise FilesystemFailure(f"Cannot write staging file: {e}") from e

        return staging_path

    def _complete(self, url: str, staging_path: Path) -> None:
        """Replace the local document with the downloaded one and mark it downloaded.

        The old file is deleted before the copy; if the copy fails the
        publication has no local document and is marked not downloaded.
        """
        pub = self.repo.find_by_url(url)
        if pub is None:
            logger.warning("Downloaded %s but no publication has that URL any more", url)
            return

        dest = self.document_path(pub)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with contextlib.suppress(FileNotFoundError):
                dest.unlink()
            shutil.copyfile(staging_path, dest)
        except OSError as e:
            raise FilesystemFailure(f"Could not save {pub.title!r} to disk: {e}") from e

        try:
            self.repo.set_status(pub.id, PublicationStatus.DOWNLOADED)
        except StorageFailure:
            # a file is only kept for a publication recorded as downloaded
            with contextlib.suppress(OSError):
                dest.unlink()
            raise
        logger.info("Downloaded publication %s to %s", pub.id, dest)
        self.events.emit(DownloadFinished(pub.id))

    def _fail(self, url: str, reason: str) -> None:
        """Revert a failed transfer's publication to not downloaded."""
        try:
            pub = self.repo.find_by_url(url)
        except StorageFailure as e:
            logger.error("Could not look up failed transfer %s: %s", url, e)
            return
        if pub is None:
            logger.warning("Failed transfer %s has no publication", url)
            return
        try:
            self.repo.set_status(pub.id, PublicationStatus.NOT_DOWNLOADED)
        except StorageFailure as e:
            logger.error("Could not revert status of publication %s: %s", pub.id, e)
        self.events.emit(DownloadFailed(pub.id, reason))

    # ── Cover images ──────────────────────────────────────────────────

    def download_cover_image(self, publication_id: int, image_url: str) -> bool:
        """Fetch a cover image and store it in the catalog record.

        Runs on the calling thread.

        Returns:
            True if the image was stored
        """
        if not is_valid_url(image_url):
            logger.warning("Bad cover image URL for publication %s: %r", publication_id, image_url)
            return False
        try:
            response = http.request(
                self.session, "GET", image_url, timeout=self.settings.request_timeout
            )
            http.check_response(response)
            stored = self.repo.set_cover_image(publication_id, response.content)
        except CallPubsError as e:
            logger.warning("Cover image for publication %s failed (%s): %s", publication_id, image_url, e)
            return False
        if not stored:
            logger.warning("Cover image fetched for missing publication %s", publication_id)
        return stored

    # ── Local copies ──────────────────────────────────────────────────

    def delete_local_copy(self, publication_id: int) -> bool:
        """Delete a publication's document file and mark it not downloaded.

        The catalog record itself is left alone.

        Returns:
            True if the status was reset
        """
        pub = self.repo.find_by_id(publication_id)
        if pub is None:
            logger.warning("Cannot delete document of unknown publication %s", publication_id)
            return False

        path = self.document_path(pub)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("No local document for publication %s at %s", publication_id, path)
        except OSError as e:
            logger.error("Unable to delete %s: %s", path, e)
            return False

        try:
            return self.repo.set_status(publication_id, PublicationStatus.NOT_DOWNLOADED)
        except StorageFailure as e:
            logger.error("Could not reset status of publication %s: %s", publication_id, e)
            return False

    # ── Integrity ─────────────────────────────────────────────────────

    def validate_integrity(self) -> IntegrityReport:
        """Reset statuses that no longer match reality.

        1. Downloaded publications whose file is missing become not downloaded.
        2. Downloading publications with no matching in-flight transfer
           (e.g. the process was killed mid-download) become not downloaded.
        """
        report = IntegrityReport()

        for pub in self.repo.find_by_status(PublicationStatus.DOWNLOADED):
            if self.document_path(pub).exists():
                continue
            logger.info("Publication %r not actually downloaded, resetting status", pub.title)
            if self._reset_status(pub.id, PublicationStatus.DOWNLOADED):
                report.orphaned_ids.append(pub.id)

        for pub in self.repo.find_by_status(PublicationStatus.DOWNLOADING):
            # Under the lock no transfer for this URL can start or finish
            # between the check and the reset.
            with self._lock:
                if pub.publication_url in self._in_flight:
                    continue
                if self._reset_status(pub.id, PublicationStatus.DOWNLOADING):
                    report.zombie_ids.append(pub.id)
        if report.zombie_ids:
            logger.info("%d zombie downloads reset", len(report.zombie_ids))

        return report

    def _reset_status(self, publication_id: int, expected: PublicationStatus) -> bool:
        try:
            return self.repo.set_status(
                publication_id, PublicationStatus.NOT_DOWNLOADED, expected=expected
            )
        except StorageFailure as e:
            logger.error("Unable to update status of publication %s: %s", publication_id, e)
            return False

    def validate_integrity_in_background(self) -> "Future[IntegrityReport]":
        """Run :meth:`validate_integrity` on the worker pool."""
        future = self._executor.submit(self.validate_integrity)
        with self._lock:
            self._background.append(future)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
