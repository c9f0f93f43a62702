"""ChromaDB vector index for knowledge-base chunks.

One persistent collection in cosine space. Vector ids are the durable
document ids (as strings) so that a vector entry can always be traced back to
its IndexedDocument; similarity is reported as 1 - cosine distance.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import chromadb

from vectorstore.embedder import Embedder

logger = logging.getLogger(__name__)

DEFAULT_PERSIST_DIR = Path(__file__).parent.parent / "data" / "chroma"
DEFAULT_COLLECTION = "university_knowledge"


class VectorStoreError(Exception):
    """Base class for vector index failures."""


class VectorWriteFailure(VectorStoreError):
    """An upsert or delete against the vector index did not complete."""


class RetrievalUnavailable(VectorStoreError):
    """The vector index could not answer a similarity query."""


@dataclass
class VectorHit:
    """A single nearest-neighbour result."""
    id: str
    text: str
    similarity: float  # 0-1, higher = more similar
    metadata: dict = field(default_factory=dict)


def _sanitize_metadata(metadata: dict) -> dict:
    """Chroma metadata values must be str, int, float or bool."""
    clean = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            clean[key] = value
        else:
            clean[key] = str(value)
    return clean


class VectorStore:
    """Persistent ChromaDB collection with embedding on write and on query."""

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        persist_dir: Optional[str] = None,
        collection_name: str = DEFAULT_COLLECTION,
        client=None,
    ):
        self.embedder = embedder or Embedder()
        self.collection_name = collection_name
        if client is None:
            path = Path(persist_dir) if persist_dir else DEFAULT_PERSIST_DIR
            path.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(path))
        self.client = client
        self.collection = self._get_collection()

    def _get_collection(self):
        return self.client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, id: str, text: str, metadata: dict) -> str:
        """Embed and write a single entry, replacing any entry with the same id.

        Returns:
            The vector id.

        Raises:
            VectorWriteFailure: embedding or the collection write failed.
        """
        try:
            embedding = self.embedder.embed_single(text)
            self.collection.upsert(
                ids=[id],
                documents=[text],
                metadatas=[_sanitize_metadata(metadata)],
                embeddings=[embedding],
            )
        except Exception as e:
            raise VectorWriteFailure(f"Vector upsert failed for {id}: {e}") from e
        return id

    def delete(self, ids: list[str]):
        """Delete entries by id; ids that do not exist are ignored.

        Raises:
            VectorWriteFailure: the collection delete failed.
        """
        if not ids:
            return
        try:
            self.collection.delete(ids=ids)
        except Exception as e:
            raise VectorWriteFailure(f"Vector delete failed for {ids}: {e}") from e
        logger.debug("Deleted %d vectors", len(ids))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def similarity_search(
        self,
        query: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[VectorHit]:
        """Nearest neighbours of the query, best first, at or above min_similarity.

        Raises:
            RetrievalUnavailable: embedding or the collection query failed.
        """
        try:
            available = self.collection.count()
            if available == 0 or top_k <= 0:
                return []
            embedding = self.embedder.embed_query(query)
            results = self.collection.query(
                query_embeddings=[embedding],
                n_results=min(top_k, available),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise RetrievalUnavailable(f"Similarity search failed: {e}") from e

        hits = []
        if results and results.get("ids") and results["ids"][0]:
            for i, hit_id in enumerate(results["ids"][0]):
                similarity = max(0.0, 1.0 - results["distances"][0][i])
                if similarity < min_similarity:
                    continue
                hits.append(VectorHit(
                    id=hit_id,
                    text=results["documents"][0][i] or "",
                    similarity=similarity,
                    metadata=results["metadatas"][0][i] or {},
                ))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits

    def count(self) -> int:
        return self.collection.count()

    def reset(self):
        """Drop and recreate the collection."""
        try:
            self.client.delete_collection(self.collection_name)
        except Exception as e:
            logger.warning("Could not delete collection %s: %s", self.collection_name, e)
        self.collection = self._get_collection()
        logger.info("Reset vector collection %s", self.collection_name)

    def get_stats(self) -> dict:
        return {self.collection_name: {"count": self.count()}}
