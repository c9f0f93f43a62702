"""RAG query engine: retrieve → prompt → complete → score.

Per query:
  1. Retrieve the top-K chunks above the similarity floor
  2. Pick a prompt template (caller's category, else detected from the question)
  3. Call the completion function (grounded prompt, or the fallback prompt
     when nothing was retrieved)
  4. Score the answer and decide on human handoff

A failed completion produces an apology answer flagged for handoff; the
engine never raises to its caller.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from processors.categorizer import Categorizer
from rag import confidence
from rag.prompts import DEFAULT_SUGGESTIONS, PromptLibrary, suggested_questions
from rag.retriever import RetrievedChunk, Retriever
from schemas.page import Category

logger = logging.getLogger(__name__)

# (system_prompt, user_message) -> answer text
Completion = Callable[[str, str], str]

APOLOGY_ANSWER = (
    "I'm sorry, I'm experiencing technical difficulties. "
    "Please try again later or contact the registrar's office."
)
MAX_SOURCES = 3


@dataclass
class QueryResult:
    """Complete result of answering one question."""
    query: str
    answer: str
    confidence: float
    confidence_level: str
    needs_human_assistance: bool
    category: Optional[str] = None
    top_documents: list[RetrievedChunk] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    suggested_questions: list[str] = field(default_factory=list)
    response_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "answer": self.answer,
            "category": self.category,
            "confidence": round(self.confidence, 3),
            "confidence_level": self.confidence_level,
            "needs_human_assistance": self.needs_human_assistance,
            "sources": self.sources,
            "suggested_questions": self.suggested_questions,
            "response_time_ms": self.response_time_ms,
            "top_documents": [
                {
                    "document_id": d.document_id,
                    "title": d.title,
                    "similarity": round(d.similarity, 3),
                    "source": d.source,
                }
                for d in self.top_documents
            ],
        }


class QueryEngine:
    """Answers questions from the knowledge base with a confidence score."""

    def __init__(
        self,
        retriever: Retriever,
        completion: Optional[Completion] = None,
        prompts: Optional[PromptLibrary] = None,
        categorizer: Optional[Categorizer] = None,
        top_k: Optional[int] = None,
    ):
        self.retriever = retriever
        if completion is None:
            from rag.llm import LLMClient
            completion = LLMClient()
        self.completion = completion
        self.prompts = prompts or PromptLibrary.load()
        self.categorizer = categorizer or Categorizer()
        self.top_k = top_k

    def reload_prompts(self) -> PromptLibrary:
        """Swap in a fresh prompt snapshot; returns it."""
        self.prompts = self.prompts.reload()
        logger.info("Prompt templates reloaded")
        return self.prompts

    def retrieve(self, query: str) -> list[RetrievedChunk]:
        return list(self.retriever.retrieve(query, self.top_k))

    def answer(self, query: str, category: Union[Category, str, None] = None) -> QueryResult:
        """Answer a question.

        Args:
            query: The user's question.
            category: Optional category (Category or name). Used to pick the
                prompt and passed unchanged to the confidence scorer; when
                absent the prompt category is detected from the question.
        """
        start = time.perf_counter()
        requested = Category.parse(category) if category is not None else None
        prompt_category = requested or self.categorizer.categorize_question(query)
        category_label = category.value if isinstance(category, Category) else category

        documents = self.retrieve(query)
        logger.info(
            "Retrieved %d documents for query '%.80s' (prompt category %s)",
            len(documents), query, prompt_category.value,
        )

        if documents:
            system = self.prompts.build_prompt(
                prompt_category, [d.content for d in documents], query,
            )
        else:
            system = self.prompts.build_fallback_prompt(query)

        try:
            answer = self.completion(system, query)
        except Exception as e:
            logger.exception("Completion failed for query '%.80s': %s", query, e)
            return QueryResult(
                query=query,
                answer=APOLOGY_ANSWER,
                confidence=0.0,
                confidence_level=confidence.confidence_level(0.0),
                needs_human_assistance=True,
                category=category_label,
                top_documents=documents,
                sources=[],
                suggested_questions=list(DEFAULT_SUGGESTIONS),
                response_time_ms=_elapsed_ms(start),
            )

        scored = confidence.score(answer, len(documents), category)
        result = QueryResult(
            query=query,
            answer=answer,
            confidence=scored.confidence,
            confidence_level=scored.level,
            needs_human_assistance=scored.needs_human_assistance,
            category=category_label,
            top_documents=documents,
            sources=_sources(documents),
            suggested_questions=suggested_questions(requested),
            response_time_ms=_elapsed_ms(start),
        )
        logger.info(
            "Query answered: confidence=%.3f (%s), needs_human=%s, %dms",
            result.confidence, result.confidence_level,
            result.needs_human_assistance, result.response_time_ms,
        )
        return result


def _sources(documents: list[RetrievedChunk]) -> list[str]:
    """Distinct source URLs (or titles) of the retrieved chunks, best first."""
    sources: list[str] = []
    for doc in documents:
        source = doc.source or doc.title
        if source and source not in sources:
            sources.append(source)
        if len(sources) == MAX_SOURCES:
            break
    return sources


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
