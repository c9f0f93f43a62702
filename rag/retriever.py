"""Retrieval engine over the knowledge base.

Vector retrieval returns up to top_k chunks at or above a similarity floor,
best first. It never raises: if the vector index is unreachable or slower
than the request timeout, the caller gets an empty result and a log line.
Hits whose document has no durable record are dropped.

The lexical fallback (substring search over durable content) and
category browsing are separate, explicit read paths.
"""

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Iterator, Optional

from schemas.document import IndexedDocument
from schemas.page import Category
from vectorstore.document_store import DocumentStore
from vectorstore.store import VectorHit, VectorStore, VectorStoreError

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
DEFAULT_MIN_SIMILARITY = 0.5
DEFAULT_TIMEOUT = 10.0  # seconds


@dataclass
class RetrievedChunk:
    """A single retrieved chunk with its similarity score."""
    document_id: int
    content: str
    similarity: float  # 0-1, higher = more similar
    title: str = ""
    category: str = ""
    source: str = ""
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_hit(cls, document_id: int, hit: VectorHit) -> "RetrievedChunk":
        meta = hit.metadata or {}
        return cls(
            document_id=document_id,
            content=hit.text,
            similarity=hit.similarity,
            title=meta.get("title", ""),
            category=meta.get("category", ""),
            source=meta.get("source", ""),
            metadata={k: v for k, v in meta.items() if k not in {
                "title", "category", "source", "document_id",
            }},
        )


def _document_id(hit: VectorHit) -> Optional[int]:
    raw = (hit.metadata or {}).get("document_id", hit.id)
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class Retriever:
    """Similarity retrieval with a floor, a timeout and an orphan guard."""

    def __init__(
        self,
        store: VectorStore,
        documents: DocumentStore,
        top_k: int = DEFAULT_TOP_K,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.store = store
        self.documents = documents
        self.top_k = top_k
        self.min_similarity = min_similarity
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="retrieval")

    def close(self):
        """Stop the search workers; pending searches are cancelled."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "Retriever":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def retrieve(self, query: str, top_k: Optional[int] = None) -> Iterator[RetrievedChunk]:
        """Lazily yield the most similar indexed chunks for a query.

        The search runs when iteration starts; the iterator is single-use.

        Args:
            query: The user's question.
            top_k: Maximum results (default: the retriever's top_k).

        Yields:
            RetrievedChunks with similarity >= the floor, descending.
        """
        k = self.top_k if top_k is None else top_k
        if not query or not query.strip() or k <= 0:
            return

        hits = self._search(query, k)
        if not hits:
            return

        hits = sorted(
            (h for h in hits if h.similarity >= self.min_similarity),
            key=lambda h: h.similarity,
            reverse=True,
        )[:k]

        ids = {h.id: _document_id(h) for h in hits}
        try:
            known = self.documents.existing_ids([i for i in ids.values() if i is not None])
        except sqlite3.Error as e:
            logger.error("Could not verify retrieved documents: %s", e)
            return

        for hit in hits:
            doc_id = ids[hit.id]
            if doc_id is None or doc_id not in known:
                logger.warning("Dropping vector %s with no durable document", hit.id)
                continue
            yield RetrievedChunk.from_hit(doc_id, hit)

    def _search(self, query: str, k: int) -> list[VectorHit]:
        try:
            future = self._executor.submit(self.store.similarity_search, query, k, self.min_similarity)
        except RuntimeError as e:
            logger.error("Retriever is closed: %s", e)
            return []
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            logger.error("Vector search timed out after %.1fs for query '%.80s'", self.timeout, query)
        except VectorStoreError as e:
            logger.error("Vector search unavailable: %s", e)
        except Exception as e:
            logger.exception("Unexpected vector search failure: %s", e)
        return []

    # ------------------------------------------------------------------
    # Durable-store read paths
    # ------------------------------------------------------------------

    def search_by_content(self, term: str, limit: int = 10) -> list[IndexedDocument]:
        """Lexical fallback: documents whose content contains the term."""
        if not term or not term.strip():
            return []
        try:
            return self.documents.search_content(term.strip(), limit)
        except sqlite3.Error as e:
            logger.error("Content search failed for '%s': %s", term, e)
            return []

    def retrieve_by_category(self, category: Category, limit: int = 10) -> list[IndexedDocument]:
        try:
            return self.documents.list_by_category(category, limit)
        except sqlite3.Error as e:
            logger.error("Category listing failed for %s: %s", category.value, e)
            return []

    def indexed_document_count(self) -> int:
        try:
            return self.documents.count(indexed_only=True)
        except sqlite3.Error as e:
            logger.error("Could not count indexed documents: %s", e)
            return 0

    def is_knowledge_base_ready(self) -> bool:
        return self.indexed_document_count() > 0
