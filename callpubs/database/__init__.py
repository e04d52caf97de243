"""Local persistence: the publication catalog and the sync cursor."""

from callpubs.database.cursor_store import CursorStore, SyncCursor
from callpubs.database.repository import PublicationRepository

__all__ = ["CursorStore", "PublicationRepository", "SyncCursor"]
