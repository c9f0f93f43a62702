"""Assign a coarse topic category to pages and questions by keyword matching.

Pages are categorized from their URL and title; the first matching rule in
priority order wins. Questions are categorized from their text so that a
category-specific prompt can be chosen when the caller supplies none.
Keyword rules can be overridden from a JSON file of the form:

    {"page_rules": [["ADMISSIONS", ["admission"]], ...],
     "question_rules": [["TUITION", ["tuition", "fee"]], ...]}
"""

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from schemas.page import Category

logger = logging.getLogger(__name__)

Rule = tuple[Category, tuple[str, ...]]

# Priority order matters: "academic" is checked only after directory/contact.
DEFAULT_PAGE_RULES: list[Rule] = [
    (Category.ADMISSIONS, ("admission",)),
    (Category.COURSES, ("catalog", "course")),
    (Category.TUITION, ("tuition", "fee")),
    (Category.DEADLINES, ("deadline", "calendar")),
    (Category.POLICIES, ("policy", "policies")),
    (Category.GENERAL, ("directory", "contact")),
    (Category.COURSES, ("academic",)),
]

DEFAULT_QUESTION_RULES: list[Rule] = [
    (Category.TUITION, ("tuition", "fee", "payment", "cost", "price")),
    (Category.COURSES, ("course", "class", "registration", "enroll")),
    (Category.DEADLINES, ("deadline", "date", "when", "due")),
    (Category.POLICIES, ("policy", "rule", "regulation", "requirement")),
    (Category.TECHNICAL, ("login", "password", "access", "technical", "portal")),
]


class Categorizer:
    """Keyword-rule categorizer for pages and user questions."""

    def __init__(
        self,
        page_rules: Optional[Sequence[Rule]] = None,
        question_rules: Optional[Sequence[Rule]] = None,
        default: Category = Category.GENERAL,
    ):
        self.page_rules = _lowercase(page_rules if page_rules is not None else DEFAULT_PAGE_RULES)
        self.question_rules = _lowercase(
            question_rules if question_rules is not None else DEFAULT_QUESTION_RULES
        )
        self.default = default

    @classmethod
    def from_file(cls, path: str) -> "Categorizer":
        """Load keyword rules from JSON, keeping defaults for missing sections."""
        kw_path = Path(path)
        if not kw_path.exists():
            logger.warning("Category keyword file not found: %s (using defaults)", path)
            return cls()
        with open(kw_path) as f:
            data = json.load(f)

        def parse(key: str) -> Optional[list[Rule]]:
            if key not in data:
                return None
            return [(Category(name.upper()), tuple(keywords)) for name, keywords in data[key]]

        return cls(page_rules=parse("page_rules"), question_rules=parse("question_rules"))

    def categorize(self, url: str, title: str) -> Category:
        """Category of a page, from case-insensitive substring matches on URL and title."""
        haystacks = ((url or "").lower(), (title or "").lower())
        return self._first_match(self.page_rules, haystacks)

    def categorize_question(self, question: str) -> Category:
        return self._first_match(self.question_rules, ((question or "").lower(),))

    def _first_match(self, rules: list[Rule], haystacks: tuple[str, ...]) -> Category:
        for category, keywords in rules:
            for keyword in keywords:
                if any(keyword in text for text in haystacks):
                    return category
        return self.default


def _lowercase(rules: Sequence[Rule]) -> list[Rule]:
    return [(category, tuple(kw.lower() for kw in keywords)) for category, keywords in rules]
