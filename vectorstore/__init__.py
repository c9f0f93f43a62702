"""Vector store module for the university knowledge base.

Provides paragraph-aware chunking, OpenAI embedding generation, the ChromaDB
vector index, the SQLite durable document store and the deduplicating
indexer that keeps the two in step.
"""
