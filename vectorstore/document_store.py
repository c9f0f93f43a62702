"""SQLite-backed durable store for indexed knowledge documents.

One row per unique chunk content. The UNIQUE(checksum) constraint is the
single-writer-per-key discipline: concurrent ingestion of the same content
from two URLs produces exactly one row, and the losing insert is answered
with the existing document. Uses WAL mode so retrieval reads do not block
ingestion writes.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import orjson

from schemas.document import AlreadyExists, IndexedDocument, IndexingStats, IngestOutcome, Inserted
from schemas.page import Category

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "knowledge.db"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_document(row: sqlite3.Row) -> IndexedDocument:
    return IndexedDocument(
        id=row["id"],
        title=row["title"],
        content=row["content"],
        category=Category.parse(row["category"]) or Category.GENERAL,
        source=row["source"],
        metadata=orjson.loads(row["metadata"]) if row["metadata"] else {},
        checksum=row["checksum"],
        indexed=bool(row["indexed"]),
        vector_ref=row["vector_ref"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class DocumentStore:
    """Durable keyed store of IndexedDocuments."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self):
        conn = self._get_conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS knowledge_documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    category TEXT NOT NULL,
                    source TEXT,
                    metadata TEXT,
                    checksum TEXT NOT NULL UNIQUE,
                    indexed INTEGER NOT NULL DEFAULT 0,
                    vector_ref TEXT UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_documents_category
                    ON knowledge_documents(category);
                CREATE INDEX IF NOT EXISTS idx_documents_indexed
                    ON knowledge_documents(indexed);
                CREATE INDEX IF NOT EXISTS idx_documents_created
                    ON knowledge_documents(created_at);
            """)
            conn.commit()
            logger.info("Knowledge database initialized at %s", self.db_path)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        title: str,
        content: str,
        category: Category,
        source: Optional[str],
        metadata: dict,
        checksum: str,
    ) -> IngestOutcome:
        """Insert a new, not-yet-indexed document unless its checksum is already stored."""
        now = _now().isoformat()
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """INSERT INTO knowledge_documents
                       (title, content, category, source, metadata, checksum,
                        indexed, vector_ref, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)""",
                (
                    title, content, category.value, source,
                    orjson.dumps(metadata).decode(), checksum, now, now,
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM knowledge_documents WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return Inserted(_row_to_document(row))
        except sqlite3.IntegrityError:
            conn.rollback()
            row = conn.execute(
                "SELECT * FROM knowledge_documents WHERE checksum = ?", (checksum,)
            ).fetchone()
            if row is None:
                raise
            return AlreadyExists(_row_to_document(row))
        finally:
            conn.close()

    def mark_indexed(self, doc_id: int, vector_ref: str) -> Optional[IndexedDocument]:
        """Record a successful vector write; returns the updated document."""
        return self._set_index_state(doc_id, True, vector_ref)

    def mark_not_indexed(self, doc_id: int) -> Optional[IndexedDocument]:
        return self._set_index_state(doc_id, False, None)

    def _set_index_state(
        self, doc_id: int, indexed: bool, vector_ref: Optional[str]
    ) -> Optional[IndexedDocument]:
        conn = self._get_conn()
        try:
            conn.execute(
                """UPDATE knowledge_documents
                   SET indexed = ?, vector_ref = ?, updated_at = ?
                   WHERE id = ?""",
                (int(indexed), vector_ref, _now().isoformat(), doc_id),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM knowledge_documents WHERE id = ?", (doc_id,)
            ).fetchone()
            return _row_to_document(row) if row else None
        finally:
            conn.close()

    def delete(self, doc_id: int) -> bool:
        conn = self._get_conn()
        try:
            cursor = conn.execute("DELETE FROM knowledge_documents WHERE id = ?", (doc_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, doc_id: int) -> Optional[IndexedDocument]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM knowledge_documents WHERE id = ?", (doc_id,)
            ).fetchone()
            return _row_to_document(row) if row else None
        finally:
            conn.close()

    def get_by_checksum(self, checksum: str) -> Optional[IndexedDocument]:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM knowledge_documents WHERE checksum = ?", (checksum,)
            ).fetchone()
            return _row_to_document(row) if row else None
        finally:
            conn.close()

    def list_all(self) -> list[IndexedDocument]:
        return self._select("SELECT * FROM knowledge_documents ORDER BY id")

    def list_not_indexed(self) -> list[IndexedDocument]:
        return self._select(
            "SELECT * FROM knowledge_documents WHERE indexed = 0 ORDER BY id"
        )

    def list_by_category(self, category: Category, limit: int = 10) -> list[IndexedDocument]:
        """Most recent documents in a category."""
        return self._select(
            """SELECT * FROM knowledge_documents WHERE category = ?
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (category.value, limit),
        )

    def search_content(self, term: str, limit: int = 10) -> list[IndexedDocument]:
        """Case-insensitive substring match over document content."""
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return self._select(
            """SELECT * FROM knowledge_documents
               WHERE content LIKE ? ESCAPE '\\'
               ORDER BY id LIMIT ?""",
            (f"%{escaped}%", limit),
        )

    def existing_ids(self, doc_ids: list[int]) -> set[int]:
        """Subset of the given ids that have a durable row."""
        if not doc_ids:
            return set()
        placeholders = ",".join("?" for _ in doc_ids)
        conn = self._get_conn()
        try:
            rows = conn.execute(
                f"SELECT id FROM knowledge_documents WHERE id IN ({placeholders})",
                tuple(doc_ids),
            ).fetchall()
            return {row["id"] for row in rows}
        finally:
            conn.close()

    def count(self, indexed_only: bool = False) -> int:
        query = "SELECT COUNT(*) FROM knowledge_documents"
        if indexed_only:
            query += " WHERE indexed = 1"
        conn = self._get_conn()
        try:
            return conn.execute(query).fetchone()[0]
        finally:
            conn.close()

    def stats(self) -> IndexingStats:
        conn = self._get_conn()
        try:
            totals = conn.execute(
                """SELECT COUNT(*) AS total,
                          COALESCE(SUM(indexed), 0) AS indexed,
                          MAX(updated_at) AS last_update
                   FROM knowledge_documents"""
            ).fetchone()
            by_category = conn.execute(
                """SELECT category, COUNT(*) AS n FROM knowledge_documents
                   GROUP BY category ORDER BY category"""
            ).fetchall()
        finally:
            conn.close()

        return IndexingStats(
            total_documents=totals["total"],
            indexed_documents=totals["indexed"],
            not_indexed_documents=totals["total"] - totals["indexed"],
            documents_by_category={row["category"]: row["n"] for row in by_category},
            last_update=(
                datetime.fromisoformat(totals["last_update"]) if totals["last_update"] else None
            ),
        )

    def _select(self, query: str, params: tuple = ()) -> list[IndexedDocument]:
        conn = self._get_conn()
        try:
            return [_row_to_document(row) for row in conn.execute(query, params).fetchall()]
        finally:
            conn.close()
