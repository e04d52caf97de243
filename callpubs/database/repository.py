"""Publication repository for catalog database operations."""

import logging
import sqlite3
from collections import defaultdict
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Iterable, Iterator, Optional

from callpubs.errors import StorageFailure
from callpubs.models.listing import PublicationListing
from callpubs.models.publication import Publication, PublicationStatus

logger = logging.getLogger(__name__)

_PUBLICATION_COLUMNS = (
    "id, title, abstract, terms, notes, publication_url, date_published, "
    "status, cover_image, type"
)


class PublicationRepository:
    """Repository for the local publication catalog using SQLite.

    Every mutating method runs in its own transaction on its own connection,
    so the repository can be shared between the sync thread and the
    download workers.
    """

    def __init__(self, db_path: Path):
        """Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._init_db()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections.

        Raises:
            StorageFailure: If SQLite reports an error while the connection is open
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.Error as e:
            raise StorageFailure(str(e)) from e
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block as one transaction; commit on success, roll back on error.

        Raises:
            StorageFailure: If SQLite reports an error
        """
        with self._connection() as conn:
            try:
                cursor = conn.cursor()
                cursor.execute("BEGIN IMMEDIATE")
                yield cursor
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageFailure(str(e)) from e
            except BaseException:
                conn.rollback()
                raise

    def _init_db(self) -> None:
        """Initialize database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS publication_types (
                    type TEXT PRIMARY KEY
                );
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS publications (
                    id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    abstract TEXT NOT NULL DEFAULT '',
                    terms TEXT NOT NULL DEFAULT '',
                    notes TEXT NOT NULL DEFAULT '',
                    publication_url TEXT NOT NULL DEFAULT '',
                    date_published TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'not_downloaded',
                    cover_image BLOB,
                    type TEXT REFERENCES publication_types(type)
                );
            """)
            # Undirected edge set: one row per pair, low_id < high_id
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS similar_links (
                    low_id INTEGER NOT NULL REFERENCES publications(id) ON DELETE CASCADE,
                    high_id INTEGER NOT NULL REFERENCES publications(id) ON DELETE CASCADE,
                    PRIMARY KEY (low_id, high_id),
                    CHECK (low_id < high_id)
                );
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_status ON publications(status);")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_url ON publications(publication_url);")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_date ON publications(date_published);")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_high ON similar_links(high_id);")
            conn.commit()

    # ── Row mapping ───────────────────────────────────────────────────

    @staticmethod
    def _row_to_publication(row: sqlite3.Row, similar: Optional[list[int]] = None) -> Publication:
        return Publication(
            id=row["id"],
            title=row["title"],
            abstract=row["abstract"],
            terms=row["terms"],
            notes=row["notes"],
            publication_url=row["publication_url"],
            date_published=date.fromisoformat(row["date_published"]),
            status=PublicationStatus(row["status"]),
            cover_image=row["cover_image"],
            type=row["type"],
            similar=sorted(similar or []),
        )

    def _similar_map(self, conn: sqlite3.Connection) -> dict[int, list[int]]:
        """Build the id → similar ids accessor from the edge set."""
        similar: dict[int, list[int]] = defaultdict(list)
        for row in conn.execute("SELECT low_id, high_id FROM similar_links"):
            similar[row["low_id"]].append(row["high_id"])
            similar[row["high_id"]].append(row["low_id"])
        return similar

    def _rows_to_publications(
        self, conn: sqlite3.Connection, rows: list[sqlite3.Row]
    ) -> list[Publication]:
        similar = self._similar_map(conn)
        return [self._row_to_publication(row, similar.get(row["id"])) for row in rows]

    # ── Types ─────────────────────────────────────────────────────────

    def ensure_type(self, type_name: str) -> bool:
        """Create the publication type if unknown.

        Returns:
            True if the type was created
        """
        with self._transaction() as cursor:
            return self._ensure_type(cursor, type_name)

    @staticmethod
    def _ensure_type(cursor: sqlite3.Cursor, type_name: str) -> bool:
        cursor.execute(
            "INSERT OR IGNORE INTO publication_types (type) VALUES (?)",
            (type_name,),
        )
        return cursor.rowcount > 0

    def list_types(self) -> list[str]:
        """Return all known publication types, sorted."""
        with self._connection() as conn:
            rows = conn.execute("SELECT type FROM publication_types ORDER BY type ASC").fetchall()
        return [row["type"] for row in rows]

    # ── Reconcile writes ──────────────────────────────────────────────

    def upsert_from_listing(self, listing: PublicationListing) -> bool:
        """Create or update a publication from a listing entry.

        Only catalog metadata is written; notes, status and the cover image
        of an existing record are left untouched. The type is created if
        needed and similar links to already stored publications are added
        on both sides, all in the same transaction.

        Args:
            listing: Parsed listing entry

        Returns:
            True if the publication was created, False if it was updated

        Raises:
            StorageFailure: If the write fails
        """
        with self._transaction() as cursor:
            self._ensure_type(cursor, listing.type)

            cursor.execute("SELECT 1 FROM publications WHERE id = ?", (listing.id,))
            is_new = cursor.fetchone() is None

            if is_new:
                cursor.execute(
                    """
                    INSERT INTO publications
                    (id, title, abstract, terms, publication_url, date_published, type, status)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        listing.id,
                        listing.title,
                        listing.abstract,
                        listing.terms,
                        listing.publication_url,
                        listing.date_published.isoformat(),
                        listing.type,
                        PublicationStatus.NOT_DOWNLOADED.value,
                    ),
                )
            else:
                cursor.execute(
                    """
                    UPDATE publications
                    SET title = ?, abstract = ?, terms = ?, publication_url = ?,
                        date_published = ?, type = ?
                    WHERE id = ?
                    """,
                    (
                        listing.title,
                        listing.abstract,
                        listing.terms,
                        listing.publication_url,
                        listing.date_published.isoformat(),
                        listing.type,
                        listing.id,
                    ),
                )

            for similar_id in listing.similar:
                cursor.execute("SELECT 1 FROM publications WHERE id = ?", (similar_id,))
                if cursor.fetchone() is None:
                    # not seen yet; a later pass links it from the other side
                    continue
                self._link_similar(cursor, listing.id, similar_id)

        return is_new

    def link_similar(self, first_id: int, second_id: int) -> bool:
        """Link two stored publications as similar (both directions).

        Returns:
            True if a new link was created
        """
        with self._transaction() as cursor:
            return self._link_similar(cursor, first_id, second_id)

    @staticmethod
    def _link_similar(cursor: sqlite3.Cursor, first_id: int, second_id: int) -> bool:
        if first_id == second_id:
            return False
        low, high = sorted((first_id, second_id))
        cursor.execute(
            "INSERT OR IGNORE INTO similar_links (low_id, high_id) VALUES (?, ?)",
            (low, high),
        )
        return cursor.rowcount > 0

    def delete_publication(self, publication_id: int) -> bool:
        """Delete a publication after stripping every similar link to it.

        Returns:
            True if a publication was deleted
        """
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM similar_links WHERE low_id = ? OR high_id = ?",
                (publication_id, publication_id),
            )
            cursor.execute("DELETE FROM publications WHERE id = ?", (publication_id,))
            return cursor.rowcount > 0

    def delete_missing(self, retained_ids: Iterable[int]) -> list[int]:
        """Delete every stored publication whose id is not in *retained_ids*.

        Each deletion is its own transaction.

        Returns:
            IDs that were deleted
        """
        retained = set(retained_ids)
        deleted = []
        for pub_id in self.ids():
            if pub_id in retained:
                continue
            if self.delete_publication(pub_id):
                deleted.append(pub_id)
        return deleted

    # ── Asset state writes ────────────────────────────────────────────

    def set_status(
        self,
        publication_id: int,
        status: PublicationStatus,
        expected: Optional[PublicationStatus] = None,
    ) -> bool:
        """Set the download status of one publication.

        Args:
            publication_id: Publication to update
            status: New status
            expected: If given, only update when the current status is this

        Returns:
            True if the row was updated
        """
        sql = "UPDATE publications SET status = ? WHERE id = ?"
        params: list = [status.value, publication_id]
        if expected is not None:
            sql += " AND status = ?"
            params.append(expected.value)
        with self._transaction() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount > 0

    def set_cover_image(self, publication_id: int, data: bytes) -> bool:
        """Store cover image bytes inline in the catalog record."""
        with self._transaction() as cursor:
            cursor.execute(
                "UPDATE publications SET cover_image = ? WHERE id = ?",
                (sqlite3.Binary(data), publication_id),
            )
            return cursor.rowcount > 0

    def has_cover_image(self, publication_id: int) -> bool:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT cover_image IS NOT NULL AS has_cover FROM publications WHERE id = ?",
                (publication_id,),
            ).fetchone()
        return bool(row and row["has_cover"])

    def set_notes(self, publication_id: int, notes: str) -> bool:
        """Store the reader's notes for a publication."""
        with self._transaction() as cursor:
            cursor.execute(
                "UPDATE publications SET notes = ? WHERE id = ?",
                (notes, publication_id),
            )
            return cursor.rowcount > 0

    # ── Queries ───────────────────────────────────────────────────────

    def ids(self) -> list[int]:
        """Return all stored publication IDs, ascending."""
        with self._connection() as conn:
            rows = conn.execute("SELECT id FROM publications ORDER BY id ASC").fetchall()
        return [row["id"] for row in rows]

    def similar_ids(self, publication_id: int) -> list[int]:
        """Return the IDs linked as similar to *publication_id*, ascending."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT high_id AS other FROM similar_links WHERE low_id = ?
                UNION
                SELECT low_id AS other FROM similar_links WHERE high_id = ?
                ORDER BY other ASC
                """,
                (publication_id, publication_id),
            ).fetchall()
        return [row["other"] for row in rows]

    def find_by_id(self, publication_id: int) -> Optional[Publication]:
        """Find a single publication by ID.

        Args:
            publication_id: Publication ID to find

        Returns:
            Publication if found, None otherwise
        """
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_PUBLICATION_COLUMNS} FROM publications WHERE id = ?",
                (publication_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_publication(row, self.similar_ids(publication_id))

    def find_by_url(self, publication_url: str) -> Optional[Publication]:
        """Find the publication whose document is served from *publication_url*."""
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {_PUBLICATION_COLUMNS} FROM publications WHERE publication_url = ? LIMIT 1",
                (publication_url,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_publication(row, self.similar_ids(row["id"]))

    def find_by_status(self, status: PublicationStatus) -> list[Publication]:
        """Find publications with the given download status."""
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {_PUBLICATION_COLUMNS} FROM publications WHERE status = ? ORDER BY id ASC",
                (status.value,),
            ).fetchall()
            return self._rows_to_publications(conn, rows)

    def find_all(
        self,
        type_filter: Optional[str] = None,
        since: Optional[date] = None,
        downloaded_only: bool = False,
        sort_by: str = "date",
        descending: bool = True,
    ) -> list[Publication]:
        """Find publications with optional filters.

        Args:
            type_filter: Only this publication type
            since: Only publications published on or after this date
            downloaded_only: Only publications whose document is on disk
            sort_by: 'date' (date published) or 'type' (grouped by type, then date)
            descending: Newest first when True

        Returns:
            List of Publication objects
        """
        direction = "DESC" if descending else "ASC"
        order_clauses = {
            "date": f"date_published {direction}, id ASC",
            "type": f"type ASC, date_published {direction}, id ASC",
        }
        order_sql = order_clauses.get(sort_by, order_clauses["date"])

        where = []
        params: list = []
        if type_filter is not None:
            where.append("type = ?")
            params.append(type_filter)
        if since is not None:
            where.append("date_published >= ?")
            params.append(since.isoformat())
        if downloaded_only:
            where.append("status = ?")
            params.append(PublicationStatus.DOWNLOADED.value)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_PUBLICATION_COLUMNS}
                FROM publications
                {where_sql}
                ORDER BY {order_sql}
                """,
                params,
            ).fetchall()
            return self._rows_to_publications(conn, rows)

    def search(self, text: str) -> list[Publication]:
        """Find publications matching every word of *text*.

        A word matches when it appears (case-insensitive) in the title,
        abstract or terms.
        """
        words = [w for w in text.split() if w]
        if not words:
            return self.find_all()

        clauses = []
        params: list[str] = []
        for word in words:
            pattern = f"%{word}%"
            clauses.append("(title LIKE ? OR abstract LIKE ? OR terms LIKE ?)")
            params.extend([pattern, pattern, pattern])

        with self._connection() as conn:
            rows = conn.execute(
                f"""
                SELECT {_PUBLICATION_COLUMNS}
                FROM publications
                WHERE {' AND '.join(clauses)}
                ORDER BY date_published DESC, id ASC
                """,
                params,
            ).fetchall()
            return self._rows_to_publications(conn, rows)

    def counts(self) -> dict[str, int]:
        """Return total and per-status publication counts."""
        with self._connection() as conn:
            by_status = {
                row["status"]: row["cnt"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS cnt FROM publications GROUP BY status"
                )
            }
        counts = {status.value: by_status.get(status.value, 0) for status in PublicationStatus}
        counts["total"] = sum(counts.values())
        return counts
