"""Tests for content fingerprinting and URL de-duplication."""

from processors.deduplicator import content_checksum, dedupe_urls, normalize_content


class TestChecksum:
    def test_identical_content_same_checksum(self):
        """Checksums are deterministic SHA-256 hex digests."""
        text = "Tuition is due on the first day of classes."
        assert content_checksum(text) == content_checksum(text)
        assert len(content_checksum(text)) == 64

    def test_layout_whitespace_ignored(self):
        """Whitespace-only differences share a checksum."""
        assert content_checksum("Fees   apply.\n\nSee bursar.") == content_checksum("Fees apply. See bursar. ")

    def test_single_character_difference(self):
        """Any visible character change is new content."""
        assert content_checksum("Fee is $25.") != content_checksum("Fee is $26.")
        assert content_checksum("Fee is due") != content_checksum("fee is due")

    def test_unicode_normalization(self):
        """Composed and decomposed accents fingerprint the same."""
        assert normalize_content("Caf\u00e9") == normalize_content("Cafe\u0301")


class TestDedupeUrls:
    def test_keeps_first_occurrence(self):
        """Normalized duplicates are dropped, order preserved."""
        urls = [
            "https://www.aum.edu/admissions/",
            "https://www.aum.edu/directory/",
            "https://WWW.aum.edu/admissions#apply",
        ]
        assert dedupe_urls(urls) == ["https://www.aum.edu/admissions/", "https://www.aum.edu/directory/"]

    def test_blank_urls_skipped(self):
        """Empty entries are ignored."""
        assert dedupe_urls(["", "  ", "https://www.aum.edu/"]) == ["https://www.aum.edu/"]
