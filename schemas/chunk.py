"""Pydantic model for a bounded slice of a scraped page, ready for indexing."""

from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str = Field(description="The chunk text for embedding and retrieval")
    source_title: str
    chunk_index: int = Field(ge=0, description="0-based position within the source document")
    total_chunks: int = Field(ge=1, description="Actual number of chunks emitted for the source")

    @property
    def title(self) -> str:
        if self.total_chunks == 1:
            return self.source_title
        return f"{self.source_title} (Part {self.chunk_index + 1} of {self.total_chunks})"
