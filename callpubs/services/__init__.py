"""Service layer."""

from callpubs.services.download_service import DownloadManager, IntegrityReport
from callpubs.services.reconcile_service import ListingReconciler, ReconcileOutcome
from callpubs.services.update_service import UpdateChecker, UpdateOutcome, UpdateResult

__all__ = [
    "DownloadManager",
    "IntegrityReport",
    "ListingReconciler",
    "ReconcileOutcome",
    "UpdateChecker",
    "UpdateOutcome",
    "UpdateResult",
]
