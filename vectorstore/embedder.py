"""OpenAI embedding function for knowledge chunks and user questions.

Chunks are embedded on upsert, questions on every similarity search. FAQ
traffic repeats the same questions often, so question embeddings are kept in
a small LRU cache; chunk embeddings never are.

Texts are truncated with tiktoken so a misconfigured chunk size never fails a
batch. Transient API errors (rate limits, timeouts, 5xx) are retried with
exponential backoff; rejected requests are not.
"""

import logging
import os
import threading
import time
from collections import OrderedDict
from typing import Optional

import tiktoken
from openai import BadRequestError, OpenAI
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536
FALLBACK_ENCODING = "cl100k_base"
MAX_BATCH_SIZE = 128
MAX_TOKENS_PER_TEXT = 8000  # model limit is 8192
QUERY_CACHE_SIZE = 256


def _log_retry(retry_state):
    logger.warning(
        "Embedding request failed (attempt %d), retrying: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception() if retry_state.outcome else "unknown",
    )


class Embedder:
    """Embeds chunk and question text with OpenAI's embedding API."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_DIMENSIONS,
        api_key: Optional[str] = None,
        client: Optional[OpenAI] = None,
        query_cache_size: int = QUERY_CACHE_SIZE,
    ):
        self.model = model
        self.dimensions = dimensions
        self.client = client or OpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"))
        try:
            self._encoder = tiktoken.encoding_for_model(model)
        except KeyError:
            logger.info("No tiktoken encoding registered for %s; using %s", model, FALLBACK_ENCODING)
            self._encoder = tiktoken.get_encoding(FALLBACK_ENCODING)
        self._query_cache: OrderedDict[str, list[float]] = OrderedDict()
        self._query_cache_size = query_cache_size
        self._cache_lock = threading.Lock()

    def _fit(self, text: str) -> str:
        """Blank text becomes a single space (the API rejects empty input); long text is cut."""
        if not text or not text.strip():
            return " "
        tokens = self._encoder.encode(text)
        if len(tokens) <= MAX_TOKENS_PER_TEXT:
            return text
        logger.warning(
            "Chunk of %d tokens cut to %d before embedding ('%.60s')",
            len(tokens), MAX_TOKENS_PER_TEXT, text,
        )
        return self._encoder.decode(tokens[:MAX_TOKENS_PER_TEXT])

    @retry(
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=2, min=2, max=30),
        retry=retry_if_not_exception_type(BadRequestError),
        reraise=True,
        before_sleep=_log_retry,
    )
    def _request(self, texts: list[str]) -> list[list[float]]:
        response = self.client.embeddings.create(
            model=self.model,
            input=texts,
            dimensions=self.dimensions,
        )
        return [item.embedding for item in sorted(response.data, key=lambda item: item.index)]

    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in API-sized batches.

        Returns:
            One vector per input text, in input order.
        """
        if not texts:
            return []

        prepared = [self._fit(t) for t in texts]
        vectors: list[list[float]] = []
        start = time.perf_counter()
        for offset in range(0, len(prepared), MAX_BATCH_SIZE):
            vectors.extend(self._request(prepared[offset:offset + MAX_BATCH_SIZE]))

        if len(prepared) > 1:
            logger.info(
                "Embedded %d chunks in %.1fs (%d batches)",
                len(vectors), time.perf_counter() - start,
                (len(prepared) + MAX_BATCH_SIZE - 1) // MAX_BATCH_SIZE,
            )
        return vectors

    def embed_single(self, text: str) -> list[float]:
        """Embed one chunk for an upsert."""
        return self.embed([text])[0]

    def embed_query(self, question: str) -> list[float]:
        """Embed a user question, reusing recent results for repeated questions."""
        key = " ".join(question.split()).lower()
        with self._cache_lock:
            cached = self._query_cache.get(key)
            if cached is not None:
                self._query_cache.move_to_end(key)
                return cached

        vector = self.embed([question])[0]
        if self._query_cache_size > 0:
            with self._cache_lock:
                self._query_cache[key] = vector
                self._query_cache.move_to_end(key)
                while len(self._query_cache) > self._query_cache_size:
                    self._query_cache.popitem(last=False)
        return vector
