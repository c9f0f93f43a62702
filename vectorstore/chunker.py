"""Boundary-preserving chunking engine for scraped institutional pages.

Splits extracted page text into bounded, overlapping chunks sized for
embedding. Paragraph (blank-line) boundaries are preferred; a paragraph too
large to fit is split recursively at line, sentence, then word boundaries,
with a hard character split only as a last resort.

Every chunk except the last of a document satisfies
MIN_CHUNK_SIZE <= len(content) <= MAX_CHUNK_SIZE. Consecutive chunks share an
overlap tail: the end of the previous chunk, trimmed to start at a sentence
boundary when one falls inside it.
"""

import logging
import re

from schemas.chunk import Chunk
from schemas.page import ScrapedPage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration (characters)
# ---------------------------------------------------------------------------

TARGET_CHUNK_SIZE = 1000
MAX_CHUNK_SIZE = 1500
MIN_CHUNK_SIZE = 200
OVERLAP_SIZE = 200

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
PARAGRAPH_JOINER = "\n\n"
SENTENCE_BOUNDARY = ". "

# Separators in priority order for splitting oversized paragraphs
SEPARATORS = ["\n", ". ", " "]


class Chunker:
    """Paragraph-aware chunking engine with sentence-trimmed overlap."""

    def __init__(
        self,
        target_size: int = TARGET_CHUNK_SIZE,
        max_size: int = MAX_CHUNK_SIZE,
        min_size: int = MIN_CHUNK_SIZE,
        overlap: int = OVERLAP_SIZE,
    ):
        if not 0 < min_size <= target_size <= max_size:
            raise ValueError(
                f"Chunk sizes must satisfy 0 < min ({min_size}) <= target ({target_size}) "
                f"<= max ({max_size})"
            )
        if not 0 <= overlap <= min_size:
            raise ValueError(f"Overlap ({overlap}) must be between 0 and min size ({min_size})")
        self.target_size = target_size
        self.max_size = max_size
        self.min_size = min_size
        self.overlap = overlap
        if self.piece_limit < 1:
            raise ValueError(f"Max size ({max_size}) leaves no room for content after min size ({min_size})")

    @property
    def piece_limit(self) -> int:
        """Largest piece that always fits after an overlap seed or an unflushable buffer."""
        return self.max_size - max(self.overlap, self.min_size) - len(PARAGRAPH_JOINER)

    def chunk(self, text: str, title: str) -> list[Chunk]:
        """Split text into Chunks.

        Args:
            text: Extracted page text (blank lines delimit paragraphs).
            title: Source document title, carried on every chunk.

        Returns:
            Chunks in document order with dense 0-based indexes and the true
            total count. Empty or blank text yields no chunks.
        """
        text = (text or "").strip()
        if not text:
            return []

        if len(text) <= self.max_size:
            contents = [text]
        else:
            contents = self._accumulate(self._pieces(text))

        total = len(contents)
        return [
            Chunk(content=content, source_title=title, chunk_index=i, total_chunks=total)
            for i, content in enumerate(contents)
        ]

    def chunk_page(self, page: ScrapedPage) -> list[Chunk]:
        return self.chunk(page.extracted_text, page.title)

    def chunk_pages(self, pages: list[ScrapedPage]) -> list[tuple[ScrapedPage, list[Chunk]]]:
        """Chunk a batch of pages, keeping each page alongside its chunks."""
        results = []
        total_chunks = 0
        for page in pages:
            chunks = self.chunk_page(page)
            if not chunks:
                logger.warning("No content to chunk for %s", page.source_url)
            results.append((page, chunks))
            total_chunks += len(chunks)

        logger.info(
            "Chunked %d pages into %d chunks (avg %.1f chunks/page)",
            len(pages), total_chunks, total_chunks / max(len(pages), 1),
        )
        return results

    # -------------------------------------------------------------------
    # Accumulation
    # -------------------------------------------------------------------

    def _accumulate(self, pieces: list[str]) -> list[str]:
        """Greedily pack pieces into chunk contents, seeding each new chunk with overlap."""
        contents: list[str] = []
        buffer = ""
        pending = False  # buffer holds content beyond the overlap seed

        def flush() -> str:
            contents.append(buffer)
            return self._overlap_tail(buffer)

        for piece in pieces:
            if (
                pending
                and len(buffer) > self.min_size
                and len(buffer) + len(PARAGRAPH_JOINER) + len(piece) > self.max_size
            ):
                buffer = flush()
                pending = False

            buffer = f"{buffer}{PARAGRAPH_JOINER}{piece}" if buffer else piece
            pending = True

            if len(buffer) >= self.target_size:
                buffer = flush()
                pending = False

        if pending:
            contents.append(buffer)
        return contents

    def _overlap_tail(self, content: str) -> str:
        """Last `overlap` characters, starting after the first sentence boundary inside them."""
        if self.overlap == 0:
            return ""
        tail = content[-self.overlap:]
        boundary = tail.find(SENTENCE_BOUNDARY)
        if boundary > 0:
            tail = tail[boundary + len(SENTENCE_BOUNDARY):]
        return tail.strip()

    # -------------------------------------------------------------------
    # Splitting
    # -------------------------------------------------------------------

    def _pieces(self, text: str) -> list[str]:
        """Paragraphs of the text, with oversized ones split to fit."""
        pieces = []
        for paragraph in PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if len(paragraph) <= self.piece_limit:
                pieces.append(paragraph)
            else:
                pieces.extend(self._split_oversized(paragraph, 0))
        return pieces

    def _split_oversized(self, text: str, sep_index: int) -> list[str]:
        """Recursively split text at the separator for this level, merging small parts."""
        limit = self.piece_limit
        if len(text) <= limit:
            return [text]
        if sep_index >= len(SEPARATORS):
            slices = (text[i:i + limit].strip() for i in range(0, len(text), limit))
            return [s for s in slices if s]

        sep = SEPARATORS[sep_index]
        raw_parts = text.split(sep)
        if len(raw_parts) == 1:
            return self._split_oversized(text, sep_index + 1)

        # Keep the separator attached to the part it terminates
        parts = [p + sep for p in raw_parts[:-1]] + [raw_parts[-1]]

        pieces: list[str] = []
        current = ""
        for part in parts:
            if not part.strip():
                continue
            if len(part) > limit:
                if current.strip():
                    pieces.append(current.strip())
                current = ""
                pieces.extend(self._split_oversized(part.strip(), sep_index + 1))
                continue
            if len(current) + len(part) > limit:
                pieces.append(current.strip())
                current = ""
            current += part
        if current.strip():
            pieces.append(current.strip())
        return [p for p in pieces if p]
