"""Conditional update check against the catalog endpoint."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import requests

from callpubs.database.cursor_store import CursorStore, SyncCursor
from callpubs.errors import CallPubsError
from callpubs.models.listing import UpdateListing
from callpubs.services import http
from callpubs.services.reconcile_service import ListingReconciler, ReconcileOutcome
from callpubs.utils.text import http_date_now

logger = logging.getLogger(__name__)

NOT_MODIFIED = 304


class UpdateResult(Enum):
    NO_CHANGE = "no_change"
    FAILED = "failed"
    UPDATED = "updated"


@dataclass
class UpdateOutcome:
    """Result of :meth:`UpdateChecker.check_for_updates`."""

    result: UpdateResult
    new_ids: list[int] = field(default_factory=list)
    messages: list[str] = field(default_factory=list)
    error: Optional[Exception] = None
    reconcile: Optional[ReconcileOutcome] = None

    @property
    def new_count(self) -> int:
        return len(self.new_ids)

    @classmethod
    def failed(cls, error: Optional[Exception] = None, **kwargs) -> "UpdateOutcome":
        return cls(UpdateResult.FAILED, error=error, **kwargs)


class UpdateChecker:
    """Asks the server whether the listing changed before fetching it.

    A ``HEAD`` request carrying ``If-Modified-Since: <last update>`` is sent
    first; a 304 ends the check without transferring the listing.
    """

    def __init__(
        self,
        reconciler: ListingReconciler,
        cursor_store: CursorStore,
        session: Optional[requests.Session] = None,
        timeout: float = 20.0,
    ):
        self.reconciler = reconciler
        self.cursor_store = cursor_store
        self.session = session or http.build_session()
        self.timeout = timeout

    def check_for_updates(self) -> UpdateOutcome:
        """Check the endpoint and reconcile if the listing changed.

        Returns:
            NO_CHANGE on 304, UPDATED with the new publication IDs after a
            successful reconcile, FAILED on any network, server or payload error
        """
        cursor = self.cursor_store.load()
        logger.info("Sending HEAD request for updates: %s", cursor.service_url)
        try:
            response = http.request(
                self.session,
                "HEAD",
                cursor.service_url,
                timeout=self.timeout,
                headers={"If-Modified-Since": cursor.last_update},
            )
            if response.status_code == NOT_MODIFIED:
                logger.info("Status 304 - no updates available")
                return UpdateOutcome(UpdateResult.NO_CHANGE)
            http.check_response(response)
        except CallPubsError as e:
            logger.warning("Update check failed: %s", e)
            return UpdateOutcome.failed(e)

        logger.info("Updates available (HEAD status %s), downloading", response.status_code)
        return self.fetch_listing(cursor)

    def fetch_listing(self, cursor: Optional[SyncCursor] = None) -> UpdateOutcome:
        """Fetch the full listing unconditionally and reconcile it."""
        cursor = cursor or self.cursor_store.load()
        try:
            response = http.request(self.session, "GET", cursor.service_url, timeout=self.timeout)
            http.check_response(response)
            listing = UpdateListing.from_bytes(response.content)
        except CallPubsError as e:
            logger.warning("Listing download failed: %s", e)
            return UpdateOutcome.failed(e)

        last_update = response.headers.get("Date") or http_date_now()
        outcome = self.reconciler.reconcile(listing, last_update)
        if not outcome.succeeded:
            return UpdateOutcome.failed(
                messages=outcome.messages,
                reconcile=outcome,
            )
        return UpdateOutcome(
            UpdateResult.UPDATED,
            new_ids=list(outcome.new_publication_ids),
            messages=outcome.messages,
            reconcile=outcome,
        )
