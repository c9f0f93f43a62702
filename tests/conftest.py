"""Shared fixtures: temporary SQLite store and an in-memory vector index."""

import re
import time

import pytest

from vectorstore.document_store import DocumentStore
from vectorstore.indexer import DocumentIndexer
from vectorstore.store import RetrievalUnavailable, VectorHit, VectorWriteFailure


def _tokens(text: str) -> set[str]:
    return set(re.findall(r"\w+", text.lower()))


class FakeVectorStore:
    """In-memory vector index scoring by the share of query tokens found in a document."""

    def __init__(self):
        self.entries: dict[str, tuple[str, dict]] = {}
        self.fail_writes = False
        self.fail_deletes = False
        self.unavailable = False
        self.search_delay = 0.0
        self.upsert_calls = 0

    def upsert(self, id: str, text: str, metadata: dict) -> str:
        self.upsert_calls += 1
        if self.fail_writes:
            raise VectorWriteFailure(f"write refused for {id}")
        self.entries[id] = (text, dict(metadata))
        return id

    def delete(self, ids: list[str]):
        if self.fail_deletes:
            raise VectorWriteFailure(f"delete refused for {ids}")
        for i in ids:
            self.entries.pop(i, None)

    def similarity_search(self, query: str, top_k: int = 5, min_similarity: float = 0.0) -> list[VectorHit]:
        if self.search_delay:
            time.sleep(self.search_delay)
        if self.unavailable:
            raise RetrievalUnavailable("index offline")
        query_tokens = _tokens(query)
        hits = []
        for vid, (text, meta) in self.entries.items():
            if not query_tokens:
                continue
            similarity = len(query_tokens & _tokens(text)) / len(query_tokens)
            if similarity >= min_similarity:
                hits.append(VectorHit(id=vid, text=text, similarity=similarity, metadata=meta))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:top_k]

    def count(self) -> int:
        return len(self.entries)

    def reset(self):
        self.entries.clear()

    def get_stats(self) -> dict:
        return {"fake": {"count": self.count()}}


@pytest.fixture
def document_store(tmp_path):
    return DocumentStore(str(tmp_path / "knowledge.db"))


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def indexer(document_store, vector_store):
    return DocumentIndexer(document_store, vector_store)


SAMPLE_HTML = """\
<html>
  <head><title>Undergraduate Admissions | AUM</title></head>
  <body>
    <header><div class="logo">AUM</div></header>
    <nav><a href="/">Home</a><a href="/apply">Apply</a></nav>
    <div role="banner">Campus alert banner</div>
    <main>
      <h1>Apply to AUM</h1>
      <p>Freshman applicants   must submit
         official transcripts.</p>
      <ul><li>Application fee: $25</li><li>Priority deadline: March 1</li></ul>
      <table><tr><th>Term</th><td>Fall 2025</td></tr></table>
    </main>
    <script>var tracking = true;</script>
    <footer>Copyright AUM</footer>
  </body>
</html>
"""


@pytest.fixture
def sample_html():
    return SAMPLE_HTML
