"""Institutional web page scraper.

Fetches pages with an identifying User-Agent and a bounded timeout, strips
navigation/header/footer boilerplate, prefers the main-content landmark and
produces immutable ScrapedPage objects with a resolved title and category.

Batches are polite: sequential batches space every request by a fixed delay.
With max_workers > 1 the delay applies per host and different hosts are
fetched in parallel. A failure on one URL never aborts the batch.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

import requests

from processors.categorizer import Categorizer
from processors.deduplicator import dedupe_urls
from schemas.page import ScrapedPage
from scrapers.utils import (
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    FetchError,
    ParseError,
    RateLimiter,
    extract_content,
    fetch_url,
)

logger = logging.getLogger(__name__)


@dataclass
class ScrapeBatch:
    """Outcome of scraping a list of URLs."""
    urls_requested: int
    pages: list[ScrapedPage] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # url -> reason

    @property
    def urls_scraped(self) -> int:
        return len(self.pages)


class PageScraper:
    """Fetches and extracts ScrapedPages from URLs."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        request_delay: float = 1.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_workers: int = 1,
        categorizer: Optional[Categorizer] = None,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_workers = max(1, max_workers)
        self.categorizer = categorizer or Categorizer()
        # Sequential batches space every request; a worker pool spaces per host
        self.rate_limiter = RateLimiter(min_delay=request_delay, per_host=self.max_workers > 1)
        self.session = session

    def extract(self, url: str) -> ScrapedPage:
        """Fetch and extract a single page.

        Raises:
            FetchError: network failure, timeout or error status.
            ParseError: markup no parser could read.
        """
        logger.info("Scraping URL: %s", url)
        response = fetch_url(
            url,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
            rate_limiter=self.rate_limiter,
            session=self.session,
        )
        page = self.extract_html(response.text, url)
        logger.info(
            "Scraped %s: '%s' [%s] (%d chars)",
            url, page.title, page.category.value, len(page.extracted_text),
        )
        return page

    def extract_html(self, html: str, url: str) -> ScrapedPage:
        """Build a ScrapedPage from already-fetched markup."""
        title, text = extract_content(html)
        return ScrapedPage(
            source_url=url,
            title=title,
            extracted_text=text,
            category=self.categorizer.categorize(url, title),
        )

    def scrape_urls(self, urls: list[str]) -> ScrapeBatch:
        """Scrape a batch of URLs, isolating per-URL failures.

        Returns:
            ScrapeBatch with the successful pages (in request order) and the
            failed URLs with their reasons.
        """
        batch = ScrapeBatch(urls_requested=len(urls))
        unique_urls = dedupe_urls(urls)
        logger.info("Scraping %d URLs (%d workers)", len(unique_urls), self.max_workers)

        if self.max_workers == 1:
            results = [self._scrape_one(url) for url in unique_urls]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(self._scrape_one, unique_urls))

        for url, page, error in results:
            if page is not None:
                batch.pages.append(page)
            else:
                batch.failures[url] = error

        logger.info(
            "Scraping complete: %d successful, %d failed",
            batch.urls_scraped, len(batch.failures),
        )
        return batch

    def _scrape_one(self, url: str) -> tuple[str, Optional[ScrapedPage], str]:
        try:
            return url, self.extract(url), ""
        except FetchError as e:
            logger.error("Failed to fetch %s: %s", url, e)
            return url, None, str(e)
        except ParseError as e:
            logger.error("Failed to parse %s: %s", url, e)
            return url, None, str(e)
