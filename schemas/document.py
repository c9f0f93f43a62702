"""Durable knowledge-base records and the outcomes of writing them."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from schemas.page import Category


class IndexedDocument(BaseModel):
    """A chunk persisted in the durable store.

    `indexed` is true only once the matching vector entry has been written,
    at which point `vector_ref` holds its id in the vector index.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    content: str
    category: Category = Category.GENERAL
    source: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    checksum: str = Field(description="SHA-256 of the normalized content; unique per store")
    indexed: bool = False
    vector_ref: Optional[str] = None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Inserted:
    """A new document was written."""
    document: IndexedDocument


@dataclass(frozen=True)
class AlreadyExists:
    """A document with the same checksum was already stored."""
    document: IndexedDocument


IngestOutcome = Union[Inserted, AlreadyExists]


class IndexingStats(BaseModel):
    total_documents: int = 0
    indexed_documents: int = 0
    not_indexed_documents: int = 0
    documents_by_category: dict[str, int] = Field(default_factory=dict)
    last_update: Optional[datetime] = None

    @property
    def indexing_rate(self) -> float:
        if self.total_documents == 0:
            return 0.0
        return self.indexed_documents * 100.0 / self.total_documents
