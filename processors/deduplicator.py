"""Deduplication helpers for the ingestion path.

Handles two levels of deduplication:
1. Exact URL dedup: the same page requested twice in one batch
2. Content fingerprinting: SHA-256 over normalized chunk text, used by the
   indexer as the sole duplicate key
"""

import hashlib
import logging
import re
import unicodedata

from scrapers.utils import normalize_url

logger = logging.getLogger(__name__)


def normalize_content(text: str) -> str:
    """Canonical form of chunk text used for fingerprinting.

    Unicode is NFC-normalized and whitespace runs collapse to one space, so
    re-scrapes that differ only in layout whitespace share a checksum. Case
    and punctuation are preserved: any visible character change is new content.
    """
    text = unicodedata.normalize("NFC", text or "")
    return re.sub(r"\s+", " ", text).strip()


def content_checksum(text: str) -> str:
    """SHA-256 hex digest of the normalized content."""
    return hashlib.sha256(normalize_content(text).encode("utf-8")).hexdigest()


def dedupe_urls(urls: list[str]) -> list[str]:
    """Remove duplicate URLs (after normalization), keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for url in urls:
        if not url or not url.strip():
            continue
        key = normalize_url(url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(url.strip())

    if len(unique) != len(urls):
        logger.info("URL dedup: %d → %d", len(urls), len(unique))
    return unique
