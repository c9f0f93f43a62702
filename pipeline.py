#!/usr/bin/env python3
"""Operator CLI for the university FAQ knowledge base.

Usage:
  python pipeline.py scrape                              # Scrape seed URLs → data/raw/pages.json
  python pipeline.py scrape --urls https://www.aum.edu/admissions/

  python pipeline.py ingest                              # Scrape + chunk + index seed URLs
  python pipeline.py ingest --urls https://...           # Custom URLs
  python pipeline.py ingest --from-raw                   # Index pages saved by `scrape`
  python pipeline.py ingest --reset                      # Wipe vectors first, then reindex

  python pipeline.py reindex                             # Rewrite every vector entry
  python pipeline.py reindex --only-unindexed            # Retry failed vector writes

  python pipeline.py stats                               # Knowledge base statistics
  python pipeline.py query "When is tuition due?"        # Retrieval only
  python pipeline.py ask "When is tuition due?"          # Retrieval + answer + confidence
  python pipeline.py search "parking"                    # Lexical fallback search
  python pipeline.py browse TUITION --limit 5            # Latest documents by category
  python pipeline.py delete 42                           # Remove a document and its vector
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from schemas.page import Category

load_dotenv()

# Project paths
PROJECT_ROOT = Path(__file__).parent
CONFIG_DIR = PROJECT_ROOT / "config"
DATA_DIR = Path(os.getenv("KNOWLEDGE_DATA_DIR", PROJECT_ROOT / "data"))
RAW_DIR = DATA_DIR / "raw"
DB_PATH = Path(os.getenv("KNOWLEDGE_DB_PATH", DATA_DIR / "knowledge.db"))
CHROMA_DIR = Path(os.getenv("KNOWLEDGE_CHROMA_DIR", DATA_DIR / "chroma"))
PROMPTS_DIR = CONFIG_DIR / "prompts"

DATA_DIR.mkdir(parents=True, exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(DATA_DIR / "pipeline.log"),
    ],
)
logger = logging.getLogger(__name__)

CATEGORY_NAMES = [c.value for c in Category]


def load_sources_config() -> dict:
    """Load seed URLs and scrape politeness settings."""
    config_path = CONFIG_DIR / "sources.json"
    if not config_path.exists():
        raise FileNotFoundError(f"Sources config not found: {config_path}")
    with open(config_path) as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------

def build_scraper(config: dict):
    from processors.categorizer import Categorizer
    from scrapers.page_scraper import PageScraper
    from scrapers.utils import DEFAULT_USER_AGENT

    keywords_path = CONFIG_DIR / "category_keywords.json"
    categorizer = Categorizer.from_file(str(keywords_path)) if keywords_path.exists() else Categorizer()
    return PageScraper(
        timeout=config.get("timeout_seconds", 30),
        request_delay=config.get("request_delay_seconds", 1.0),
        user_agent=config.get("user_agent") or DEFAULT_USER_AGENT,
        max_workers=config.get("max_workers", 1),
        categorizer=categorizer,
    )


def build_document_store():
    from vectorstore.document_store import DocumentStore
    return DocumentStore(str(DB_PATH))


def build_indexer():
    from vectorstore.indexer import DocumentIndexer
    from vectorstore.store import VectorStore
    return DocumentIndexer(build_document_store(), VectorStore(persist_dir=str(CHROMA_DIR)))


def build_retriever(top_k: int = 5):
    from rag.retriever import Retriever
    from vectorstore.store import VectorStore
    return Retriever(VectorStore(persist_dir=str(CHROMA_DIR)), build_document_store(), top_k=top_k)


def _resolve_urls(args, config: dict) -> list[str]:
    return args.urls if args.urls else config.get("seed_urls", [])


# ---------------------------------------------------------------------------
# SCRAPE / INGEST
# ---------------------------------------------------------------------------

def cmd_scrape(args):
    """Scrape URLs and save the extracted pages for a later `ingest --from-raw`."""
    from vectorstore.ingest import save_pages

    config = load_sources_config()
    urls = _resolve_urls(args, config)
    batch = build_scraper(config).scrape_urls(urls)
    path = save_pages(batch.pages, RAW_DIR)

    print(f"\nScraped {batch.urls_scraped}/{batch.urls_requested} URLs → {path}")
    for url, reason in batch.failures.items():
        print(f"  FAILED {url}: {reason}")


def cmd_ingest(args):
    """Scrape (or load), chunk and index pages into the knowledge base."""
    from vectorstore.chunker import Chunker
    from vectorstore.ingest import IngestionPipeline, load_pages

    config = load_sources_config()
    indexer = build_indexer()
    chunker = Chunker(
        target_size=args.target_size,
        max_size=args.max_size,
        min_size=args.min_size,
        overlap=args.overlap,
    )
    pipeline = IngestionPipeline(build_scraper(config), chunker, indexer)

    if args.reset:
        logger.warning("Resetting vector collection; all documents will be reindexed")
        indexer.vectors.reset()
        indexer.reindex_all()

    if args.from_raw:
        stats = pipeline.ingest_pages(load_pages(RAW_DIR))
    else:
        stats = pipeline.load_from_urls(_resolve_urls(args, config))

    _print_loading_summary(stats.to_dict())
    _print_stats(indexer.stats())


def cmd_reindex(args):
    """Rewrite vector entries for all documents, or only those left unindexed."""
    indexer = build_indexer()
    report = indexer.retry_unindexed() if args.only_unindexed else indexer.reindex_all()
    print(f"\nReindexed {report.indexed}/{report.attempted} documents ({report.failed} failed)")
    _print_stats(indexer.stats())


# ---------------------------------------------------------------------------
# STATS
# ---------------------------------------------------------------------------

def cmd_stats(args):
    """Show durable store and vector index statistics."""
    from vectorstore.store import VectorStore

    _print_stats(build_document_store().stats())
    for name, info in VectorStore(persist_dir=str(CHROMA_DIR)).get_stats().items():
        print(f"  Vector collection {name}: {info.get('count', 0)} vectors")
    print("=" * 70)


def _print_loading_summary(stats: dict):
    print("\n" + "=" * 70)
    print("INGESTION SUMMARY")
    print("=" * 70)
    print(f"  URLs requested:     {stats['urls_requested']}")
    print(f"  URLs scraped:       {stats['urls_scraped']} ({stats['success_rate']}%)")
    print(f"  Chunks created:     {stats['chunks_created']}")
    print(f"  Documents indexed:  {stats['documents_indexed']} ({stats['indexing_rate']}%)")
    print(f"  Duration:           {stats['duration_ms']}ms")


def _print_stats(stats):
    print("\n" + "=" * 70)
    print("KNOWLEDGE BASE STATUS")
    print("=" * 70)
    print(f"  Total documents:    {stats.total_documents}")
    print(f"  Indexed:            {stats.indexed_documents} ({stats.indexing_rate:.1f}%)")
    print(f"  Not indexed:        {stats.not_indexed_documents}")
    print(f"  Last update:        {stats.last_update.isoformat() if stats.last_update else 'never'}")
    if stats.documents_by_category:
        print("  By category:")
        for category, count in stats.documents_by_category.items():
            print(f"    {category:<12} {count}")


# ---------------------------------------------------------------------------
# QUERY / ASK / SEARCH / BROWSE
# ---------------------------------------------------------------------------

def cmd_query(args):
    """Run a retrieval-only query against the knowledge base."""
    with build_retriever(top_k=args.top_k) as retriever:
        if not retriever.is_knowledge_base_ready():
            print("Knowledge base is empty; run `pipeline.py ingest` first.")
            return
        results = list(retriever.retrieve(args.query))

    print(f"\nQuery: \"{args.query}\"")
    print(f"Results: {len(results)}")
    print("-" * 50)
    for i, chunk in enumerate(results, 1):
        print(f"\n[{i}] Score: {chunk.similarity:.4f} | {chunk.category} | doc {chunk.document_id}")
        print(f"    Title: {chunk.title}")
        print(f"    Source: {chunk.source}")
        preview = chunk.content[:200].replace("\n", " ")
        print(f"    Text: {preview}...")
    if not results:
        print("No results above the similarity floor; try `pipeline.py search`.")


def cmd_ask(args):
    """Answer a question with retrieval, completion and confidence scoring."""
    from rag.llm import LLMClient
    from rag.prompts import PromptLibrary
    from rag.query_engine import QueryEngine

    with build_retriever(top_k=args.top_k) as retriever:
        engine = QueryEngine(
            retriever,
            completion=LLMClient(provider=args.provider, model=args.model),
            prompts=PromptLibrary.load(str(PROMPTS_DIR) if PROMPTS_DIR.exists() else None),
        )
        result = engine.answer(args.question, category=args.category)

    print(f"\nQuestion: {result.query}")
    print("-" * 50)
    print(result.answer)
    print("-" * 50)
    print(f"Confidence: {result.confidence:.3f} ({result.confidence_level})")
    print(f"Needs human assistance: {'yes' if result.needs_human_assistance else 'no'}")
    if result.sources:
        print("Sources:")
        for source in result.sources:
            print(f"  - {source}")
    print("You might also ask:")
    for question in result.suggested_questions:
        print(f"  - {question}")


def cmd_search(args):
    """Lexical fallback: substring search over stored content."""
    with build_retriever() as retriever:
        docs = retriever.search_by_content(args.term, limit=args.limit)
    print(f"\n{len(docs)} documents containing \"{args.term}\"")
    for doc in docs:
        print(f"  [{doc.id}] {doc.title} ({doc.category.value}) {doc.source or ''}")


def cmd_browse(args):
    """List the most recent documents in a category."""
    with build_retriever() as retriever:
        docs = retriever.retrieve_by_category(Category(args.category), limit=args.limit)
    print(f"\n{len(docs)} {args.category} documents")
    for doc in docs:
        status = "indexed" if doc.indexed else "NOT INDEXED"
        print(f"  [{doc.id}] {doc.title} ({status}) {doc.source or ''}")


def cmd_delete(args):
    """Delete a document and its vector entry."""
    if build_indexer().delete_document(args.document_id):
        print(f"Deleted document {args.document_id}")
    else:
        print(f"Document {args.document_id} was not deleted (see log)")
        sys.exit(1)


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------

def main():
    parser = argparse.ArgumentParser(
        description="University FAQ Knowledge Base Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Pipeline command")

    # Scrape
    scrape_parser = subparsers.add_parser("scrape", help="Scrape pages to data/raw")
    scrape_parser.add_argument("--urls", nargs="+", default=None, help="URLs (default: seed URLs)")

    # Ingest
    ingest_parser = subparsers.add_parser("ingest", help="Scrape, chunk and index pages")
    ingest_source = ingest_parser.add_mutually_exclusive_group()
    ingest_source.add_argument("--urls", nargs="+", default=None, help="URLs (default: seed URLs)")
    ingest_source.add_argument(
        "--from-raw", action="store_true", help="Index pages saved by a previous scrape",
    )
    ingest_parser.add_argument("--reset", action="store_true", help="Wipe the vector collection first")
    ingest_parser.add_argument("--target-size", type=int, default=1000, help="Target chunk size (default: 1000)")
    ingest_parser.add_argument("--max-size", type=int, default=1500, help="Max chunk size (default: 1500)")
    ingest_parser.add_argument("--min-size", type=int, default=200, help="Min chunk size (default: 200)")
    ingest_parser.add_argument("--overlap", type=int, default=200, help="Chunk overlap (default: 200)")

    # Reindex
    reindex_parser = subparsers.add_parser("reindex", help="Rewrite vector entries")
    reindex_parser.add_argument(
        "--only-unindexed", action="store_true", help="Only documents whose vector write failed",
    )

    # Stats
    subparsers.add_parser("stats", help="Show knowledge base statistics")

    # Query (retrieval only)
    query_parser = subparsers.add_parser("query", help="Retrieval-only query")
    query_parser.add_argument("query", help="Query text")
    query_parser.add_argument("--top-k", type=int, default=5, help="Number of results")

    # Ask
    ask_parser = subparsers.add_parser("ask", help="Answer a question with confidence")
    ask_parser.add_argument("question", help="Question text")
    ask_parser.add_argument(
        "--category", type=str.upper, choices=CATEGORY_NAMES, default=None, help="Question category",
    )
    ask_parser.add_argument("--top-k", type=int, default=5, help="Documents to retrieve")
    ask_parser.add_argument("--provider", choices=["anthropic", "openai"], default="anthropic")
    ask_parser.add_argument("--model", default=None, help="Override the provider's default model")

    # Search
    search_parser = subparsers.add_parser("search", help="Substring search over stored content")
    search_parser.add_argument("term", help="Search term")
    search_parser.add_argument("--limit", type=int, default=10)

    # Browse
    browse_parser = subparsers.add_parser("browse", help="List documents by category")
    browse_parser.add_argument("category", type=str.upper, choices=CATEGORY_NAMES)
    browse_parser.add_argument("--limit", type=int, default=10)

    # Delete
    delete_parser = subparsers.add_parser("delete", help="Delete a document and its vector")
    delete_parser.add_argument("document_id", type=int)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "scrape": cmd_scrape,
        "ingest": cmd_ingest,
        "reindex": cmd_reindex,
        "stats": cmd_stats,
        "query": cmd_query,
        "ask": cmd_ask,
        "search": cmd_search,
        "browse": cmd_browse,
        "delete": cmd_delete,
    }

    try:
        commands[args.command](args)
    except Exception as e:
        logger.exception("Pipeline error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
