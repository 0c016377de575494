"""
Operations utilities - CLI tools for inspecting and maintaining the knowledge base.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragpipe.core.config import RAG_TOP_K, get_db_path, get_embedding_provider, validate_config
from ragpipe.core.db import health_check
from ragpipe.core.errors import RAGError
from ragpipe.core.progress import BuildProgressTracker
from ragpipe.util.logging import logger
from ragpipe.vector.relevance import RelevanceFilter
from ragpipe.vector.retriever import RAGRetriever
from ragpipe.vector.store import SQLiteVectorStore


def _build_retriever(args, progress=None) -> RAGRetriever:
    return RAGRetriever(
        embedding_provider=get_embedding_provider(),
        vector_store=SQLiteVectorStore(args.db_path),
        progress=progress,
    )


def stats_command(args):
    """CLI command for showing knowledge base statistics."""
    try:
        stats = SQLiteVectorStore(args.db_path).get_stats()
    except RAGError as e:
        print(f"❌ Failed to read knowledge base stats: {e}")
        logger.error(f"CLI stats failed: {e}")
        sys.exit(1)

    if args.json:
        print(json.dumps(stats, indent=2))
        return

    print("📚 Knowledge Base Statistics")
    print(f"   Total chunks: {stats['total_chunks']}")
    print(f"   Sources: {stats['sources']}")
    for name in stats["files"][:20]:  # Limit output
        print(f"     - {name}")
    if len(stats["files"]) > 20:
        print(f"     ... and {len(stats['files']) - 20} more")


def query_command(args):
    """CLI command for running a retrieval query against the knowledge base."""
    try:
        retriever = _build_retriever(args)
        results = retriever.retrieve_relevant(args.text, top_k=args.top_k)
    except (RAGError, ValueError) as e:
        print(f"❌ Query failed: {e}")
        logger.error(f"CLI query failed: {e}")
        sys.exit(1)

    relevance = RelevanceFilter()
    if args.heading_boost:
        results = relevance.rerank_with_heading_boost(results, args.text)

    if args.filter:
        filtered = relevance.filter_and_rank(results, args.text)
        results = filtered.relevant_chunks
        print(filtered.suggestion)

    if args.json:
        print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
        return

    if not results:
        print("No results.")
        return

    for rank, result in enumerate(results, 1):
        heading = f" [{result.heading_context}]" if result.heading_context else ""
        print(f"{rank}. {result.source_id}#{result.chunk.chunk_index}{heading} (similarity: {result.similarity:.4f})")
        preview = result.text.strip().replace("\n", " ")
        print(f"   {preview[:200]}")


def reindex_file_command(args):
    """CLI command for re-indexing a single document."""
    progress = BuildProgressTracker()
    print(f"🔄 Indexing {args.path}...")

    try:
        retriever = _build_retriever(args, progress)
        result = retriever.index_file(args.path, replace=not args.append)
    except (RAGError, ValueError) as e:
        print(f"❌ Indexing failed: {e}")
        logger.error(f"CLI reindex-file failed: {e}")
        sys.exit(1)

    print(f"✅ Indexed {result.chunks} chunks from {Path(args.path).name}")
    if result.degraded:
        print(f"⚠️  {result.synthetic_chunks} chunks use synthetic embeddings")
    print(f"   Store now contains {result.stats['total_chunks']} chunks")


def health_command(args):
    """CLI command for checking configuration, database and embedding service."""
    healthy = True

    issues = validate_config()
    if issues:
        healthy = False
        print("❌ Configuration issues:")
        for issue in issues:
            print(f"   - {issue}")
    else:
        print("✅ Configuration valid")

    db_path = args.db_path or get_db_path()
    if health_check(db_path):
        print(f"✅ Database reachable: {db_path}")
    else:
        healthy = False
        print(f"❌ Database not reachable: {db_path}")

    provider = get_embedding_provider()
    if provider.is_available():
        print(f"✅ Embedding service available ({type(provider).__name__})")
    else:
        healthy = False
        print(f"❌ Embedding service not available ({type(provider).__name__})")

    if not healthy:
        sys.exit(1)


def main(argv=None):
    """Main CLI entry point for operations utilities."""
    parser = argparse.ArgumentParser(
        description="RAG Knowledge Base Operations CLI Utilities",
        prog="python scripts/ops_util.py"
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite file of the vector store (default: RAG_DB_PATH)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show knowledge base statistics")
    stats_parser.add_argument("--json", action="store_true", help="Output stats in JSON format")
    stats_parser.set_defaults(func=stats_command)

    # Query command
    query_parser = subparsers.add_parser("query", help="Retrieve chunks relevant to a query")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument("--top-k", type=int, default=RAG_TOP_K,
                              help=f"Number of results (default: RAG_TOP_K, currently {RAG_TOP_K})")
    query_parser.add_argument("--filter", action="store_true", help="Drop results below the relevance threshold")
    query_parser.add_argument("--heading-boost", action="store_true", help="Boost results whose headings match the query")
    query_parser.add_argument("--json", action="store_true", help="Output results in JSON format")
    query_parser.set_defaults(func=query_command)

    # Reindex file command
    reindex_parser = subparsers.add_parser("reindex-file", help="Re-index a single document")
    reindex_parser.add_argument("path", help="Path of the document to index")
    reindex_parser.add_argument("--append", action="store_true", help="Keep the document's previous chunks")
    reindex_parser.set_defaults(func=reindex_file_command)

    # Health command
    health_parser = subparsers.add_parser("health", help="Check configuration, database and embedding service")
    health_parser.set_defaults(func=health_command)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Run the selected command
    args.func(args)


if __name__ == "__main__":
    main()
