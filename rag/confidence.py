"""Confidence scoring for generated answers.

Combines three signals into a [0, 1] score:
  - retrieval yield (how many documents backed the answer), weight 0.4
  - response quality (length, hedging language, specific facts), weight 0.4
  - category evidence (category-specific keywords in the answer), weight 0.2

Answers scoring below LOW_CONFIDENCE_THRESHOLD are flagged for human
handoff. The HIGH / MEDIUM / LOW label is informational only.

Pure and deterministic: no I/O, no state.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from schemas.page import Category

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.75
LOW_CONFIDENCE_THRESHOLD = 0.50

RETRIEVAL_WEIGHT = 0.4
QUALITY_WEIGHT = 0.4
CATEGORY_WEIGHT = 0.2

HEDGING_FACTOR = 0.7
SPECIFICITY_FACTOR = 1.1
NEUTRAL_CATEGORY_SCORE = 0.5  # no category supplied
DEFAULT_CATEGORY_SCORE = 0.7  # category without keyword evidence rules

UNCERTAINTY_PHRASES = (
    "i don't know", "not sure", "might", "maybe", "possibly",
    "i'm not certain", "unclear", "cannot confirm", "unable to",
    "i don't have", "no information",
)

MONTHS = re.compile(
    r"\b(january|february|march|april|may|june|july|august|september|october|november|december)\b",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(r"\d{1,2}/\d{1,2}/\d{2,4}")
SPECIFIC_INFO = re.compile(r"[\d$]")

TUITION_KEYWORDS = ("tuition", "fee", "payment", "cost", "price", "dollar", "$", "semester")
COURSE_KEYWORDS = (
    "course", "class", "credit", "prerequisite", "registration", "enroll", "schedule", "semester",
)
POLICY_KEYWORDS = (
    "policy", "rule", "regulation", "requirement", "must", "should",
    "allowed", "prohibited", "procedure",
)
TECHNICAL_KEYWORDS = (
    "login", "password", "access", "portal", "system", "account",
    "email", "website", "technical", "support",
)


@dataclass(frozen=True)
class ConfidenceScore:
    confidence: float
    needs_human_assistance: bool
    level: str  # HIGH / MEDIUM / LOW
    retrieval_term: float = 0.0
    quality_term: float = 0.0
    category_term: float = 0.0


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

def retrieval_score(documents_retrieved: int) -> float:
    """Step function saturating at three corroborating documents."""
    if documents_retrieved <= 0:
        return 0.0
    if documents_retrieved == 1:
        return 0.5
    if documents_retrieved == 2:
        return 0.75
    return 1.0


def has_specific_information(response: str) -> bool:
    """Digits, a currency symbol or a month name."""
    return bool(SPECIFIC_INFO.search(response) or MONTHS.search(response))


def has_date_information(response: str) -> bool:
    return bool(DATE_PATTERN.search(response) or MONTHS.search(response))


def quality_score(response: Optional[str]) -> float:
    """Length-based base, penalized for hedging, then boosted for specific facts."""
    if response is None or not response.strip():
        return 0.0

    length = len(response)
    if length < 50:
        score = 0.3
    elif length < 150:
        score = 0.6
    else:
        score = 1.0

    lowered = response.lower()
    if any(phrase in lowered for phrase in UNCERTAINTY_PHRASES):
        score *= HEDGING_FACTOR
    if has_specific_information(response):
        score *= SPECIFICITY_FACTOR
    return min(1.0, score)


def _keywords(words: tuple[str, ...]) -> Callable[[str], bool]:
    return lambda response: any(word in response.lower() for word in words)


# Evidence rule per category: (matcher, score when the answer lacks evidence).
# None means the category has no keyword rule and scores DEFAULT_CATEGORY_SCORE.
CATEGORY_EVIDENCE: dict[Category, Optional[tuple[Callable[[str], bool], float]]] = {
    Category.TUITION: (_keywords(TUITION_KEYWORDS), 0.6),
    Category.COURSES: (_keywords(COURSE_KEYWORDS), 0.6),
    Category.DEADLINES: (has_date_information, 0.5),
    Category.POLICIES: (_keywords(POLICY_KEYWORDS), 0.6),
    Category.TECHNICAL: (_keywords(TECHNICAL_KEYWORDS), 0.6),
    Category.ADMISSIONS: None,
    Category.GENERAL: None,
}

_uncovered = set(Category) - set(CATEGORY_EVIDENCE)
if _uncovered:
    raise RuntimeError(f"No category evidence rule for: {sorted(c.value for c in _uncovered)}")


def category_score(category: Union[Category, str, None], response: Optional[str]) -> float:
    if category is None:
        return NEUTRAL_CATEGORY_SCORE
    resolved = Category.parse(category)
    if resolved is None:
        return DEFAULT_CATEGORY_SCORE
    rule = CATEGORY_EVIDENCE[resolved]
    if rule is None:
        return DEFAULT_CATEGORY_SCORE
    matches, miss_score = rule
    return 1.0 if matches(response or "") else miss_score


def confidence_level(confidence: float) -> str:
    if confidence >= HIGH_CONFIDENCE_THRESHOLD:
        return "HIGH"
    if confidence >= LOW_CONFIDENCE_THRESHOLD:
        return "MEDIUM"
    return "LOW"


def needs_human_assistance(confidence: float) -> bool:
    return confidence < LOW_CONFIDENCE_THRESHOLD


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------

def score(
    response: Optional[str],
    documents_retrieved: int,
    category: Union[Category, str, None] = None,
) -> ConfidenceScore:
    """Score a generated response.

    Args:
        response: The generated answer text (None or blank scores zero quality).
        documents_retrieved: Number of documents the answer was grounded on.
        category: Question category, a Category or its name; None when unknown.

    Returns:
        ConfidenceScore with the clamped confidence, the handoff flag and the
        informational level.
    """
    retrieval = retrieval_score(documents_retrieved)
    quality = quality_score(response)
    evidence = category_score(category, response)

    confidence = (
        RETRIEVAL_WEIGHT * retrieval
        + QUALITY_WEIGHT * quality
        + CATEGORY_WEIGHT * evidence
    )
    confidence = max(0.0, min(1.0, confidence))

    logger.debug(
        "Calculated confidence: %.3f (docs: %d, category: %s)",
        confidence, documents_retrieved, category,
    )
    return ConfidenceScore(
        confidence=confidence,
        needs_human_assistance=needs_human_assistance(confidence),
        level=confidence_level(confidence),
        retrieval_term=retrieval,
        quality_term=quality,
        category_term=evidence,
    )
