"""Shared scraping utilities: politeness, retrying fetch, HTML text extraction, raw-page files."""

import logging
import re
import threading
import time
from typing import Optional
from urllib.parse import urlparse, urlunparse

import requests
from bs4 import BeautifulSoup, Tag
from bs4.builder import ParserRejectedMarkup
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; UniversityFAQ-KnowledgeBot/1.0)"
DEFAULT_TIMEOUT = 30

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

UNTITLED = "Untitled Document"

# Structural noise removed before text extraction
NOISE_SELECTORS = [
    "nav", "header", "footer", "script", "style", "noscript",
    ".navigation", ".menu", "#menu", "#nav",
    "[role=navigation]", "[role=banner]", "[role=contentinfo]",
]
MAIN_CONTENT_SELECTOR = "main, article, .content, #content, .main, #main"
TEXT_ELEMENTS = "h1, h2, h3, h4, h5, h6, p, li, td, th"


class FetchError(Exception):
    """Network failure, timeout, or error status while fetching a page."""


class ParseError(Exception):
    """Markup that no available parser could turn into text."""


class RateLimiter:
    """Enforces a minimum delay between requests.

    With per_host=True the delay applies per host and requests to different
    hosts do not wait on each other; otherwise every request waits on the
    previous one. Safe to share between worker threads.
    """

    def __init__(self, min_delay: float = 1.0, per_host: bool = True):
        self.min_delay = min_delay
        self.per_host = per_host
        self._last_request: dict[str, float] = {}
        self._host_locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def wait(self, url: str = ""):
        host = urlparse(url).netloc if self.per_host else ""
        with self._guard:
            lock = self._host_locks.setdefault(host, threading.Lock())
        with lock:
            last = self._last_request.get(host)
            if last is not None:
                elapsed = time.monotonic() - last
                if elapsed < self.min_delay:
                    time.sleep(self.min_delay - elapsed)
            self._last_request[host] = time.monotonic()


def fetch_url(
    url: str,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    rate_limiter: Optional[RateLimiter] = None,
    session: Optional[requests.Session] = None,
) -> requests.Response:
    """Fetch a URL with retry on transient errors and optional rate limiting.

    Raises:
        FetchError: on any unrecoverable error (including exhausted retries
            and HTTP error statuses).
    """
    try:
        return _fetch_url_with_retry(
            url, headers=headers, timeout=timeout, rate_limiter=rate_limiter, session=session,
        )
    except requests.HTTPError as e:
        raise FetchError(f"HTTP error fetching {url}: {e}") from e
    except requests.RequestException as e:
        logger.error("All retries exhausted for %s: %s", url, e)
        raise FetchError(f"Failed to fetch {url}: {e}") from e


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    reraise=True,
)
def _fetch_url_with_retry(
    url: str,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    rate_limiter: Optional[RateLimiter] = None,
    session: Optional[requests.Session] = None,
) -> requests.Response:
    """Inner fetch with retry decorator."""
    if rate_limiter:
        rate_limiter.wait(url)

    merged_headers = {**DEFAULT_HEADERS, **(headers or {})}
    getter = session.get if session is not None else requests.get
    response = getter(url, headers=merged_headers, timeout=timeout)
    if response.status_code == 404:
        logger.warning("404 Not Found: %s", url)
    response.raise_for_status()
    return response


def normalize_url(url: str) -> str:
    """Normalize a URL: lowercase host, remove fragment and trailing slash."""
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/") if parsed.path != "/" else "/"
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, parsed.query, "")
    )


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------

def clean_text(text: Optional[str]) -> str:
    """Collapse runs of spaces within lines and normalize line breaks."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [re.sub(r"[ \t\f\v\xa0]+", " ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_content(html: str) -> tuple[str, str]:
    """Extract (title, text) from an HTML page.

    Falls back to the lenient stdlib parser, and then to whole-body text,
    when structural extraction is not possible.

    Raises:
        ParseError: if neither parser accepts the markup.
    """
    try:
        soup = BeautifulSoup(html, "lxml")
    except (ParserRejectedMarkup, ValueError) as e:
        logger.warning("lxml rejected markup, retrying with html.parser: %s", e)
        try:
            soup = BeautifulSoup(html, "html.parser")
        except (ParserRejectedMarkup, ValueError) as inner:
            raise ParseError(f"Unparseable markup: {inner}") from inner

    title = _extract_title(soup)

    for selector in NOISE_SELECTORS:
        for tag in soup.select(selector):
            tag.decompose()

    content_area = soup.select_one(MAIN_CONTENT_SELECTOR) or soup.body or soup
    text = _extract_structured_text(content_area)
    if not text:
        text = clean_text(re.sub(r"\s+", " ", content_area.get_text(" ", strip=True)))
    return title, text


def _extract_title(soup: BeautifulSoup) -> str:
    title = ""
    if soup.title:
        title = soup.title.get_text(" ", strip=True)
    if not title:
        h1 = soup.find("h1")
        if h1:
            title = h1.get_text(" ", strip=True)
    title = re.sub(r"\s+", " ", title).strip()
    return title or UNTITLED


def _extract_structured_text(element: Tag) -> str:
    """Text of headings, paragraphs, list items and table cells, one per line."""
    lines = []
    for node in element.select(TEXT_ELEMENTS):
        text = re.sub(r"\s+", " ", node.get_text(" ", strip=True)).strip()
        if text:
            lines.append(text)
    return clean_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Raw page files
# ---------------------------------------------------------------------------

def save_records(records: list, output_dir: str, filename: str):
    """Save a list of Pydantic model instances to a JSON file."""
    import orjson
    from pathlib import Path

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    filepath = output_path / filename
    data = [r.model_dump(mode="json") for r in records]
    filepath.write_bytes(orjson.dumps(data, option=orjson.OPT_INDENT_2))
    logger.info("Saved %d records to %s", len(records), filepath)
    return filepath


def load_records(filepath: str) -> list[dict]:
    """Load records from a JSON file."""
    import orjson
    from pathlib import Path

    path = Path(filepath)
    if not path.exists():
        return []
    return orjson.loads(path.read_bytes())
