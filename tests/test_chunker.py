"""Tests for the paragraph-aware chunking engine."""

import random

import pytest

from schemas.page import Category, ScrapedPage
from vectorstore.chunker import Chunker


def paragraph(length: int, sentence: str = "The catalog lists every course offered. ") -> str:
    """A paragraph of exactly `length` characters ending in a full stop."""
    return (sentence * (length // len(sentence) + 2))[: length - 1] + "."


def random_document(rng: random.Random, paragraphs: int) -> str:
    words = ["tuition", "course", "deadline", "policy", "student", "credit", "semester", "office"]
    parts = []
    for _ in range(paragraphs):
        sentences = []
        for _ in range(rng.randint(1, 30)):
            sentences.append(" ".join(rng.choice(words) for _ in range(rng.randint(3, 15))).capitalize() + ".")
        parts.append(" ".join(sentences))
    return "\n\n".join(parts)


def assert_chunk_invariants(chunks, chunker: Chunker):
    total = len(chunks)
    assert [c.chunk_index for c in chunks] == list(range(total))
    assert all(c.total_chunks == total for c in chunks)
    for chunk in chunks[:-1]:
        assert chunker.min_size <= len(chunk.content) <= chunker.max_size
    assert len(chunks[-1].content) <= chunker.max_size


class TestSingleChunk:
    def test_short_text_is_one_trimmed_chunk(self):
        """Text within the max size comes back whole and trimmed."""
        text = "  Tuition is due before classes begin.\n\nLate fees apply.  \n"
        chunks = Chunker().chunk(text, "Tuition")
        assert len(chunks) == 1
        assert chunks[0].content == text.strip()
        assert chunks[0].chunk_index == 0
        assert chunks[0].total_chunks == 1

    def test_exactly_max_size_is_one_chunk(self):
        """A 1500-character document is not split."""
        text = paragraph(1500)
        chunks = Chunker().chunk(text, "Catalog")
        assert len(chunks) == 1
        assert chunks[0].content == text

    def test_blank_text_yields_nothing(self):
        """Empty or whitespace-only text produces no chunks."""
        assert Chunker().chunk("", "Empty") == []
        assert Chunker().chunk("   \n\n  ", "Empty") == []

    def test_single_chunk_title_has_no_part_suffix(self):
        """Title is the source title when there is only one chunk."""
        chunk = Chunker().chunk("Short page.", "Admissions")[0]
        assert chunk.title == "Admissions"


class TestCatalogScenario:
    """2600 characters across three paragraphs."""

    @pytest.fixture
    def chunks(self):
        text = "\n\n".join([paragraph(398), paragraph(950), paragraph(1248)])
        assert len(text) == 2600
        return Chunker().chunk(text, "Catalog")

    def test_two_chunks(self, chunks):
        """The document splits into exactly two chunks."""
        assert len(chunks) == 2
        assert all(len(c.content) <= 1500 for c in chunks)

    def test_both_report_true_total(self, chunks):
        """Both chunks carry totalChunks=2."""
        assert [c.total_chunks for c in chunks] == [2, 2]
        assert [c.chunk_index for c in chunks] == [0, 1]

    def test_second_chunk_starts_with_overlap_tail(self, chunks):
        """The second chunk opens with the trailing text of the first."""
        seed = chunks[1].content.split("\n\n")[0]
        assert 0 < len(seed) <= 200
        assert chunks[0].content.endswith(seed)

    def test_part_titles(self, chunks):
        """Multi-chunk titles are suffixed with their part number."""
        assert chunks[0].title == "Catalog (Part 1 of 2)"
        assert chunks[1].title == "Catalog (Part 2 of 2)"
        assert chunks[1].source_title == "Catalog"


class TestOverlap:
    def test_overlap_trimmed_at_sentence_boundary(self):
        """The overlap tail starts right after the first '. ' inside it."""
        chunker = Chunker()
        content = "x" * 900 + ". " + "Registration opens in April. Bring your student ID."
        tail = chunker._overlap_tail(content)
        assert tail == "Registration opens in April. Bring your student ID."

    def test_overlap_without_boundary_is_raw_tail(self):
        """Without a sentence boundary the last OVERLAP characters are used."""
        chunker = Chunker()
        content = "a" * 1000 + "b" * 200
        assert chunker._overlap_tail(content) == "b" * 200

    def test_zero_overlap(self):
        """Overlap can be disabled."""
        chunker = Chunker(overlap=0)
        text = "\n\n".join([paragraph(600), paragraph(600), paragraph(600)])
        chunks = chunker.chunk(text, "No overlap")
        assert_chunk_invariants(chunks, chunker)
        assert not chunks[1].content.startswith("\n")


class TestOversizedParagraphs:
    def test_long_paragraph_split_at_sentences(self):
        """A single 5000-character paragraph still yields bounded chunks."""
        chunker = Chunker()
        chunks = chunker.chunk(paragraph(5000), "Policies")
        assert len(chunks) > 1
        assert_chunk_invariants(chunks, chunker)

    def test_unbreakable_text_hard_split(self):
        """Text with no separators at all is cut into bounded pieces."""
        chunker = Chunker()
        chunks = chunker.chunk("z" * 4000, "Blob")
        assert_chunk_invariants(chunks, chunker)
        assert "".join(c.content for c in chunks).count("z") >= 4000

    def test_line_separated_paragraph(self):
        """Single newlines are used before sentence boundaries."""
        chunker = Chunker()
        text = "\n".join(f"Row {i}: course CS{i:04d} meets twice weekly" for i in range(120))
        chunks = chunker.chunk(text, "Schedule")
        assert_chunk_invariants(chunks, chunker)


class TestInvariants:
    @pytest.mark.parametrize("seed", range(8))
    def test_random_documents(self, seed):
        """Bounds, dense indexes and true totals hold for varied documents."""
        rng = random.Random(seed)
        chunker = Chunker()
        text = random_document(rng, rng.randint(1, 25))
        chunks = chunker.chunk(text, f"Doc {seed}")
        if len(text.strip()) <= 1500:
            assert len(chunks) == 1
        assert_chunk_invariants(chunks, chunker)

    def test_custom_sizes(self):
        """Tunable sizes are respected."""
        chunker = Chunker(target_size=300, max_size=500, min_size=100, overlap=50)
        text = random_document(random.Random(42), 20)
        chunks = chunker.chunk(text, "Custom")
        assert_chunk_invariants(chunks, chunker)

    def test_invalid_sizes_rejected(self):
        """Inconsistent size settings raise ValueError."""
        with pytest.raises(ValueError):
            Chunker(target_size=100, min_size=200)
        with pytest.raises(ValueError):
            Chunker(overlap=300, min_size=200)


class TestChunkPages:
    def test_pages_keep_their_chunks(self):
        """chunk_pages pairs every page with its own chunks."""
        pages = [
            ScrapedPage(source_url="https://example.edu/a", title="A", extracted_text="Short.", category=Category.GENERAL),
            ScrapedPage(source_url="https://example.edu/b", title="B", extracted_text="", category=Category.TUITION),
        ]
        results = Chunker().chunk_pages(pages)
        assert [page.title for page, _ in results] == ["A", "B"]
        assert len(results[0][1]) == 1
        assert results[1][1] == []
