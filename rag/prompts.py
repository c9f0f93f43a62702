"""Prompt templates for grounded FAQ answers.

Templates use `{context}` and `{question}` placeholders, substituted with
plain string replacement so that braces elsewhere in a template are literal.
A PromptLibrary is an immutable snapshot; reload() builds a new one from the
same directory instead of mutating the snapshot other components hold.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from schemas.page import Category

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Built-in templates
# ---------------------------------------------------------------------------

DEFAULT_TEMPLATE = """\
You are a helpful university FAQ assistant. Answer questions accurately based on the provided context.

Context:
{context}

Question: {question}

Please provide a clear, helpful answer based on the context above.
"""

TUITION_TEMPLATE = """\
You are assisting with tuition and financial information.
Provide specific amounts, deadlines, and payment information from the context.

Context:
{context}

Question: {question}

Answer with specific tuition amounts, fees, and payment deadlines from the context.
"""

COURSES_TEMPLATE = """\
You are assisting with course registration and information.
Include prerequisites, schedules, and registration procedures from the context.

Context:
{context}

Question: {question}

Answer with course details, prerequisites, and registration information from the context.
"""

DEADLINES_TEMPLATE = """\
You are providing information about important dates and deadlines.
Always mention specific dates and what they apply to.

Context:
{context}

Question: {question}

Answer with specific dates and deadlines from the context.
"""

POLICIES_TEMPLATE = """\
You are explaining university policies and procedures.
Be clear about requirements and any exceptions.

Context:
{context}

Question: {question}

Explain the relevant policy clearly based on the context.
"""

TECHNICAL_TEMPLATE = """\
You are providing technical support for university systems.
Provide step-by-step guidance when applicable.

Context:
{context}

Question: {question}

Provide technical assistance based on the context.
"""

FALLBACK_TEMPLATE = """\
You are a university FAQ assistant, but you don't have specific information about this question.

Question: {question}

Politely explain that you don't have information on this topic and suggest contacting the appropriate university office.
"""

DEFAULT_TEMPLATES: dict[str, str] = {
    "default": DEFAULT_TEMPLATE,
    "tuition": TUITION_TEMPLATE,
    "courses": COURSES_TEMPLATE,
    "deadlines": DEADLINES_TEMPLATE,
    "policies": POLICIES_TEMPLATE,
    "technical": TECHNICAL_TEMPLATE,
    "fallback": FALLBACK_TEMPLATE,
}

CATEGORY_TEMPLATES: dict[Category, str] = {
    Category.ADMISSIONS: "default",
    Category.COURSES: "courses",
    Category.TUITION: "tuition",
    Category.DEADLINES: "deadlines",
    Category.POLICIES: "policies",
    Category.TECHNICAL: "technical",
    Category.GENERAL: "default",
}

_uncovered = set(Category) - set(CATEGORY_TEMPLATES)
if _uncovered:
    raise RuntimeError(f"No prompt template for: {sorted(c.value for c in _uncovered)}")

NO_DOCUMENTS_CONTEXT = "No relevant documents found."


# ---------------------------------------------------------------------------
# Suggested follow-up questions
# ---------------------------------------------------------------------------

DEFAULT_SUGGESTIONS = (
    "What is the tuition for undergraduate students?",
    "When is the registration deadline?",
    "How do I contact the registrar's office?",
    "Where can I find academic policies?",
)

SUGGESTED_QUESTIONS: dict[Category, tuple[str, ...]] = {
    Category.TUITION: (
        "What is the tuition per credit hour?",
        "When are tuition payments due?",
        "What fees are included besides tuition?",
        "Are there payment plans available?",
    ),
    Category.COURSES: (
        "What courses are offered this semester?",
        "How do I register for classes?",
        "What are the prerequisites for this course?",
        "When does registration open?",
    ),
    Category.DEADLINES: (
        "When is the last day to drop a course?",
        "What is the graduation application deadline?",
        "When does registration close?",
        "What are the refund deadlines?",
    ),
    Category.POLICIES: (
        "What is the attendance policy?",
        "How do I appeal a grade?",
        "What is the academic probation policy?",
        "Where can I find the student handbook?",
    ),
    Category.TECHNICAL: (
        "How do I reset my password?",
        "How do I access the student portal?",
        "Where do I find my class schedule?",
        "How do I contact IT support?",
    ),
}


def suggested_questions(category: Optional[Category]) -> list[str]:
    return list(SUGGESTED_QUESTIONS.get(category, DEFAULT_SUGGESTIONS))


# ---------------------------------------------------------------------------
# Context building
# ---------------------------------------------------------------------------

def build_context(documents: list[str]) -> str:
    """Numbered "Document i:" blocks, one per retrieved chunk."""
    if not documents:
        return NO_DOCUMENTS_CONTEXT
    return "".join(f"Document {i}:\n{doc}\n\n" for i, doc in enumerate(documents, 1))


def truncate_context(context: str, max_length: int) -> str:
    if len(context) <= max_length:
        return context
    return context[:max_length] + "\n...(truncated)"


def fill(template: str, context: str, question: str) -> str:
    return template.replace("{context}", context).replace("{question}", question)


# ---------------------------------------------------------------------------
# Library
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PromptLibrary:
    """Immutable snapshot of prompt templates keyed by name."""

    templates: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_TEMPLATES))
    )
    source_dir: Optional[Path] = None

    @classmethod
    def load(cls, directory: Optional[str] = None) -> "PromptLibrary":
        """Built-in templates, overridden by `<name>.txt` files in directory."""
        templates = dict(DEFAULT_TEMPLATES)
        if directory is None:
            return cls(templates=MappingProxyType(templates))

        path = Path(directory)
        if not path.is_dir():
            logger.warning("Prompt directory not found: %s (using built-in templates)", path)
            return cls(templates=MappingProxyType(templates), source_dir=path)

        loaded = 0
        for name in DEFAULT_TEMPLATES:
            template_file = path / f"{name}.txt"
            if template_file.exists():
                templates[name] = template_file.read_text(encoding="utf-8")
                loaded += 1
        logger.info("Loaded %d prompt templates from %s", loaded, path)
        return cls(templates=MappingProxyType(templates), source_dir=path)

    def reload(self) -> "PromptLibrary":
        """A fresh snapshot from the same source; this one is left untouched."""
        return PromptLibrary.load(str(self.source_dir) if self.source_dir else None)

    def template_for(self, category: Optional[Category]) -> str:
        if category is None:
            return self.templates["default"]
        return self.templates[CATEGORY_TEMPLATES[category]]

    def build_prompt(self, category: Optional[Category], documents: list[str], question: str) -> str:
        return fill(self.template_for(category), build_context(documents), question)

    def build_fallback_prompt(self, question: str) -> str:
        return fill(self.templates["fallback"], "", question)
