from schemas.page import Category, ScrapedPage
from schemas.chunk import Chunk
from schemas.document import (
    AlreadyExists,
    IndexedDocument,
    IndexingStats,
    IngestOutcome,
    Inserted,
)
