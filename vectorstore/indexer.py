"""Deduplicating indexer: durable row first, then vector entry, then indexed flag.

The content checksum is the only duplicate key. A chunk whose normalized
content is already stored returns the existing document untouched. New
content is persisted with indexed=false before its vector is written; a
failed vector write leaves the row durable and unindexed, visible in stats,
and picked up again by retry_unindexed() or reindex_all(). This is
at-least-once indexing, not a transaction across the two stores.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from processors.deduplicator import content_checksum
from schemas.chunk import Chunk
from schemas.document import AlreadyExists, IndexedDocument, IndexingStats, IngestOutcome, Inserted
from schemas.page import Category
from vectorstore.document_store import DocumentStore
from vectorstore.store import VectorStore, VectorWriteFailure

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    """Counts from ingesting a batch of chunks."""
    inserted: int = 0
    duplicates: int = 0
    not_indexed: int = 0  # inserted but the vector write failed
    failed: int = 0  # no durable row could be written
    documents: list[IndexedDocument] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.inserted + self.duplicates

    @property
    def documents_indexed(self) -> int:
        return sum(1 for d in self.documents if d.indexed)


@dataclass
class ReindexReport:
    attempted: int = 0
    indexed: int = 0
    failed: int = 0


def vector_id_for(doc_id: int) -> str:
    return str(doc_id)


class DocumentIndexer:
    """Writes chunks to the durable store and the vector index."""

    def __init__(self, documents: DocumentStore, vectors: VectorStore):
        self.documents = documents
        self.vectors = vectors

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, chunk: Chunk, category: Category, source_url: Optional[str]) -> IngestOutcome:
        """Ingest one chunk; idempotent under identical content.

        Returns:
            Inserted with the new document (indexed or not, depending on the
            vector write), or AlreadyExists with the stored document unchanged.
        """
        checksum = content_checksum(chunk.content)
        existing = self.documents.get_by_checksum(checksum)
        if existing is not None:
            logger.debug("Duplicate content (checksum %s...) -> document %d", checksum[:12], existing.id)
            return AlreadyExists(existing)

        outcome = self.documents.create(
            title=chunk.title,
            content=chunk.content,
            category=category,
            source=source_url,
            metadata={
                "chunk_index": chunk.chunk_index,
                "total_chunks": chunk.total_chunks,
                "original_title": chunk.source_title,
                "url": source_url,
            },
            checksum=checksum,
        )
        if isinstance(outcome, AlreadyExists):
            # Lost the insert race to a concurrent ingest of the same content
            return outcome

        return Inserted(self._write_vector(outcome.document))

    def ingest_batch(self, items: list[tuple[Chunk, Category, Optional[str]]]) -> IngestReport:
        """Ingest (chunk, category, source_url) triples, continuing past failures."""
        report = IngestReport()
        for chunk, category, source_url in items:
            try:
                outcome = self.ingest(chunk, category, source_url)
            except sqlite3.Error as e:
                report.failed += 1
                logger.error("Failed to store chunk '%s' from %s: %s", chunk.title, source_url, e)
                continue

            report.documents.append(outcome.document)
            if isinstance(outcome, Inserted):
                report.inserted += 1
                if not outcome.document.indexed:
                    report.not_indexed += 1
            else:
                report.duplicates += 1

        logger.info(
            "Indexed batch of %d chunks: %d new, %d duplicates, %d not indexed, %d failed",
            len(items), report.inserted, report.duplicates, report.not_indexed, report.failed,
        )
        return report

    # ------------------------------------------------------------------
    # Reindexing
    # ------------------------------------------------------------------

    def reindex_all(self) -> ReindexReport:
        """Rewrite the vector entry of every durable document, whatever its state."""
        return self._reindex(self.documents.list_all(), "reindex")

    def retry_unindexed(self) -> ReindexReport:
        """Re-attempt the vector write for documents left with indexed=false."""
        return self._reindex(self.documents.list_not_indexed(), "retry")

    def _reindex(self, documents: list[IndexedDocument], label: str) -> ReindexReport:
        report = ReindexReport(attempted=len(documents))
        for doc in documents:
            try:
                updated = self._write_vector(doc)
            except sqlite3.Error as e:
                logger.error("Failed to record index state for document %d: %s", doc.id, e)
                report.failed += 1
                continue
            if updated.indexed:
                report.indexed += 1
            else:
                report.failed += 1
        if documents:
            logger.info(
                "%s: %d documents, %d indexed, %d failed",
                label.capitalize(), report.attempted, report.indexed, report.failed,
            )
        return report

    def _write_vector(self, doc: IndexedDocument) -> IndexedDocument:
        """Upsert the document's vector; on success flip indexed and return the new value."""
        try:
            vector_ref = self.vectors.upsert(
                vector_id_for(doc.id),
                doc.content,
                {
                    "title": doc.title,
                    "category": doc.category.value,
                    "source": doc.source,
                    "document_id": doc.id,
                },
            )
        except VectorWriteFailure as e:
            logger.warning("Vector write failed for document %d (marked unindexed): %s", doc.id, e)
            if doc.indexed:
                # The previous vector may be gone (reset, drift); the row must not claim it
                return self.documents.mark_not_indexed(doc.id) or doc
            return doc

        updated = self.documents.mark_indexed(doc.id, vector_ref)
        if updated is None:
            # Row deleted while the vector was being written
            logger.warning("Document %d vanished during indexing; removing its vector", doc.id)
            try:
                self.vectors.delete([vector_ref])
            except VectorWriteFailure as e:
                logger.error("Could not remove orphan vector %s: %s", vector_ref, e)
            return doc
        return updated

    # ------------------------------------------------------------------
    # Deletion and stats
    # ------------------------------------------------------------------

    def delete_document(self, doc_id: int) -> bool:
        """Delete a document: vector entry first, then the durable row.

        Returns:
            True if both were removed. If the vector delete fails nothing is
            removed; if the row delete fails the row is kept and marked
            unindexed.
        """
        doc = self.documents.get(doc_id)
        if doc is None:
            logger.warning("Document %d not found", doc_id)
            return False

        try:
            self.vectors.delete([doc.vector_ref or vector_id_for(doc.id)])
        except VectorWriteFailure as e:
            logger.error("Failed to delete vector for document %d: %s", doc_id, e)
            return False

        try:
            deleted = self.documents.delete(doc_id)
        except sqlite3.Error as e:
            logger.error("Vector removed but durable delete failed for document %d: %s", doc_id, e)
            try:
                self.documents.mark_not_indexed(doc_id)
            except sqlite3.Error as inner:
                logger.error("Could not mark document %d unindexed: %s", doc_id, inner)
            return False

        logger.info("Deleted document %d ('%s')", doc_id, doc.title)
        return deleted

    def stats(self) -> IndexingStats:
        return self.documents.stats()
