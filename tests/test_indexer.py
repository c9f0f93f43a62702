"""Tests for the deduplicating indexer."""

import sqlite3
from unittest.mock import patch

from schemas.chunk import Chunk
from schemas.document import AlreadyExists, Inserted
from schemas.page import Category

URL = "https://www.aum.edu/tuition"


def chunk(content: str, title: str = "Tuition", index: int = 0, total: int = 1) -> Chunk:
    return Chunk(content=content, source_title=title, chunk_index=index, total_chunks=total)


class TestIngest:
    def test_new_chunk_is_indexed(self, indexer, vector_store):
        """A new chunk gets a durable row and a vector entry."""
        outcome = indexer.ingest(chunk("Tuition is $4500 per semester."), Category.TUITION, URL)
        assert isinstance(outcome, Inserted)
        doc = outcome.document
        assert doc.indexed is True
        assert doc.vector_ref == str(doc.id)
        text, meta = vector_store.entries[doc.vector_ref]
        assert text == "Tuition is $4500 per semester."
        assert meta == {"title": "Tuition", "category": "TUITION", "source": URL, "document_id": doc.id}

    def test_same_content_twice_is_one_document(self, indexer, vector_store, document_store):
        """Identical content returns the existing document without new writes."""
        first = indexer.ingest(chunk("Fees are due August 15."), Category.TUITION, URL)
        second = indexer.ingest(chunk("Fees are due August 15.", title="Other"), Category.GENERAL, "https://other")
        assert isinstance(second, AlreadyExists)
        assert second.document == first.document
        assert document_store.count() == 1
        assert vector_store.upsert_calls == 1

    def test_one_character_difference_is_two_documents(self, indexer, document_store):
        """Content differing by a single character is stored separately."""
        indexer.ingest(chunk("Fees are due August 15."), Category.TUITION, URL)
        indexer.ingest(chunk("Fees are due August 16."), Category.TUITION, URL)
        assert document_store.count() == 2

    def test_chunk_metadata_stored(self, indexer):
        """Part titles and chunk positions are kept on the document."""
        doc = indexer.ingest(chunk("Part two text.", title="Catalog", index=1, total=3), Category.COURSES, URL).document
        assert doc.title == "Catalog (Part 2 of 3)"
        assert doc.metadata == {"chunk_index": 1, "total_chunks": 3, "original_title": "Catalog", "url": URL}

    def test_vector_failure_leaves_durable_unindexed_row(self, indexer, vector_store, document_store):
        """A failed vector write keeps the row with indexed=false."""
        vector_store.fail_writes = True
        outcome = indexer.ingest(chunk("Parking permits cost $50."), Category.GENERAL, URL)
        assert isinstance(outcome, Inserted)
        assert outcome.document.indexed is False
        assert outcome.document.vector_ref is None
        assert indexer.stats().not_indexed_documents == 1
        assert vector_store.count() == 0


class TestIngestBatch:
    def test_counts(self, indexer, vector_store):
        """The batch report counts new, duplicate and unindexed chunks."""
        items = [
            (chunk("Alpha content."), Category.GENERAL, URL),
            (chunk("Beta content."), Category.GENERAL, URL),
            (chunk("Alpha content."), Category.GENERAL, URL),
        ]
        report = indexer.ingest_batch(items)
        assert report.inserted == 2
        assert report.duplicates == 1
        assert report.succeeded == 3
        assert report.documents_indexed == 3
        assert report.failed == 0

    def test_continues_past_storage_failures(self, indexer, document_store):
        """A storage error on one chunk does not stop the batch."""
        real_create = document_store.create
        calls = {"n": 0}

        def flaky_create(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise sqlite3.OperationalError("database is locked")
            return real_create(**kwargs)

        with patch.object(document_store, "create", side_effect=flaky_create):
            report = indexer.ingest_batch([
                (chunk("First chunk."), Category.GENERAL, URL),
                (chunk("Second chunk."), Category.GENERAL, URL),
            ])
        assert report.failed == 1
        assert report.inserted == 1
        assert document_store.count() == 1


class TestReindex:
    def test_reindex_all_indexes_everything(self, indexer, vector_store, document_store):
        """reindex_all leaves every document indexed with a vector ref."""
        vector_store.fail_writes = True
        for i in range(3):
            indexer.ingest(chunk(f"Document number {i}."), Category.GENERAL, URL)
        vector_store.fail_writes = False
        indexer.ingest(chunk("Already indexed."), Category.GENERAL, URL)

        report = indexer.reindex_all()
        assert report.attempted == 4
        assert report.indexed == 4
        assert all(d.indexed and d.vector_ref for d in document_store.list_all())
        assert vector_store.count() == 4

    def test_reindex_fixes_drift(self, indexer, vector_store, document_store):
        """A vector lost from the index is rewritten even if the row says indexed."""
        doc = indexer.ingest(chunk("Drifted content."), Category.GENERAL, URL).document
        vector_store.entries.clear()
        indexer.reindex_all()
        assert doc.vector_ref in vector_store.entries
        assert document_store.get(doc.id).updated_at >= doc.updated_at

    def test_retry_unindexed_only_touches_failed_rows(self, indexer, vector_store):
        """retry_unindexed re-attempts only indexed=false documents."""
        indexer.ingest(chunk("Good."), Category.GENERAL, URL)
        vector_store.fail_writes = True
        indexer.ingest(chunk("Failed once."), Category.GENERAL, URL)
        vector_store.fail_writes = False
        calls_before = vector_store.upsert_calls

        report = indexer.retry_unindexed()
        assert report.attempted == 1
        assert report.indexed == 1
        assert vector_store.upsert_calls == calls_before + 1
        assert indexer.stats().not_indexed_documents == 0

    def test_failed_reindex_after_reset_marks_unindexed(self, indexer, vector_store, document_store):
        """Rows whose vectors were wiped and could not be rewritten stop claiming indexed."""
        for i in range(3):
            indexer.ingest(chunk(f"Indexed before reset {i}."), Category.GENERAL, URL)
        vector_store.reset()
        vector_store.fail_writes = True

        report = indexer.reindex_all()
        assert report.failed == 3
        assert vector_store.count() == 0
        assert indexer.stats().not_indexed_documents == 3
        assert all(d.vector_ref is None for d in document_store.list_all())

        vector_store.fail_writes = False
        retry = indexer.retry_unindexed()
        assert retry.attempted == 3
        assert retry.indexed == 3
        assert vector_store.count() == 3

    def test_retry_still_failing(self, indexer, vector_store):
        """A retry that fails again leaves the row unindexed and counted."""
        vector_store.fail_writes = True
        indexer.ingest(chunk("Stubborn."), Category.GENERAL, URL)
        report = indexer.retry_unindexed()
        assert report.failed == 1
        assert indexer.stats().not_indexed_documents == 1


class TestDelete:
    def test_delete_removes_row_and_vector(self, indexer, vector_store, document_store):
        """Deleting removes both the durable row and the vector entry."""
        doc = indexer.ingest(chunk("Remove me."), Category.GENERAL, URL).document
        assert indexer.delete_document(doc.id) is True
        assert document_store.get(doc.id) is None
        assert doc.vector_ref not in vector_store.entries

    def test_vector_delete_failure_keeps_everything(self, indexer, vector_store, document_store):
        """If the vector delete fails, the row is not deleted."""
        doc = indexer.ingest(chunk("Keep me."), Category.GENERAL, URL).document
        vector_store.fail_deletes = True
        assert indexer.delete_document(doc.id) is False
        assert document_store.get(doc.id).indexed is True
        assert doc.vector_ref in vector_store.entries

    def test_row_delete_failure_marks_unindexed(self, indexer, vector_store, document_store):
        """A failed row delete after vector removal leaves a safe unindexed row."""
        doc = indexer.ingest(chunk("Half deleted."), Category.GENERAL, URL).document
        with patch.object(document_store, "delete", side_effect=sqlite3.OperationalError("locked")):
            assert indexer.delete_document(doc.id) is False
        assert doc.vector_ref not in vector_store.entries
        remaining = document_store.get(doc.id)
        assert remaining.indexed is False
        assert remaining.vector_ref is None

    def test_delete_unknown_document(self, indexer):
        """Deleting an unknown id reports False."""
        assert indexer.delete_document(424242) is False
