"""Ingestion pipeline: scrape URLs → chunk → dedupe/index into SQLite + ChromaDB.

Usage via the main pipeline:
  python pipeline.py ingest                      # configured seed URLs
  python pipeline.py ingest --urls https://...   # custom URLs
  python pipeline.py ingest --from-raw           # pages saved by `scrape`
"""

import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from schemas.page import ScrapedPage
from scrapers.page_scraper import PageScraper
from scrapers.utils import load_records, save_records
from vectorstore.chunker import Chunker
from vectorstore.indexer import DocumentIndexer

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
RAW_DIR = PROJECT_ROOT / "data" / "raw"
RAW_PAGES_FILE = "pages.json"


@dataclass
class LoadingStats:
    """Outcome of one ingestion run."""
    urls_requested: int
    urls_scraped: int
    chunks_created: int
    documents_indexed: int
    duration_ms: int

    @property
    def success_rate(self) -> float:
        """Percent of requested URLs scraped successfully."""
        if self.urls_requested == 0:
            return 0.0
        return self.urls_scraped * 100.0 / self.urls_requested

    @property
    def indexing_rate(self) -> float:
        """Percent of created chunks backed by an indexed document."""
        if self.chunks_created == 0:
            return 0.0
        return self.documents_indexed * 100.0 / self.chunks_created

    def to_dict(self) -> dict:
        data = asdict(self)
        data["success_rate"] = round(self.success_rate, 1)
        data["indexing_rate"] = round(self.indexing_rate, 1)
        return data


# ---------------------------------------------------------------------------
# Raw page files
# ---------------------------------------------------------------------------

def save_pages(pages: list[ScrapedPage], raw_dir: Optional[Path] = None) -> Path:
    return save_records(pages, str(raw_dir or RAW_DIR), RAW_PAGES_FILE)


def load_pages(raw_dir: Optional[Path] = None) -> list[ScrapedPage]:
    """Load pages saved by a previous scrape, skipping invalid records."""
    path = Path(raw_dir or RAW_DIR) / RAW_PAGES_FILE
    pages = []
    for item in load_records(str(path)):
        try:
            pages.append(ScrapedPage(**item))
        except (TypeError, ValueError) as e:
            logger.debug("Skipping invalid page record in %s: %s", path.name, e)
    logger.info("Loaded %d pages from %s", len(pages), path)
    return pages


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class IngestionPipeline:
    """Orchestrates Content Extractor → Chunking Engine → Deduplicating Indexer."""

    def __init__(self, scraper: PageScraper, chunker: Chunker, indexer: DocumentIndexer):
        self.scraper = scraper
        self.chunker = chunker
        self.indexer = indexer

    def load_from_urls(self, urls: list[str]) -> LoadingStats:
        """Scrape, chunk and index the given URLs."""
        start = time.perf_counter()
        logger.info("STEP 1/3: Scraping %d URLs...", len(urls))
        batch = self.scraper.scrape_urls(urls)
        if not batch.pages:
            logger.warning("No content was scraped from %d URLs", len(urls))
        return self.ingest_pages(batch.pages, urls_requested=len(urls), started=start)

    def ingest_pages(
        self,
        pages: list[ScrapedPage],
        urls_requested: Optional[int] = None,
        started: Optional[float] = None,
    ) -> LoadingStats:
        """Chunk and index already-scraped pages.

        Ends with one retry pass over documents still left unindexed, from
        this run or earlier ones.
        """
        start = started if started is not None else time.perf_counter()
        requested = urls_requested if urls_requested is not None else len(pages)

        logger.info("STEP 2/3: Chunking %d pages...", len(pages))
        t0 = time.perf_counter()
        chunked = self.chunker.chunk_pages(pages)
        items = [
            (chunk, page.category, page.source_url)
            for page, chunks in chunked
            for chunk in chunks
        ]
        logger.info("STEP 2/3 done: %d chunks in %.1fs", len(items), time.perf_counter() - t0)

        logger.info("STEP 3/3: Indexing %d chunks...", len(items))
        t0 = time.perf_counter()
        report = self.indexer.ingest_batch(items)
        logger.info("STEP 3/3 done: %d documents indexed in %.1fs", report.documents_indexed, time.perf_counter() - t0)

        retry = self.indexer.retry_unindexed()
        if retry.attempted:
            logger.info("Retried %d unindexed documents: %d now indexed", retry.attempted, retry.indexed)

        documents_indexed = report.documents_indexed
        if retry.indexed:
            still_unindexed = {d.id for d in self.indexer.documents.list_not_indexed()}
            documents_indexed += sum(
                1 for d in report.documents if not d.indexed and d.id not in still_unindexed
            )

        stats = LoadingStats(
            urls_requested=requested,
            urls_scraped=len(pages),
            chunks_created=len(items),
            documents_indexed=documents_indexed,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
        logger.info(
            "Ingestion complete: %d URLs, %d chunks, %d indexed in %dms",
            stats.urls_scraped, stats.chunks_created, stats.documents_indexed, stats.duration_ms,
        )
        return stats
