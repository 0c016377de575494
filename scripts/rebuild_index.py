#!/usr/bin/env python3
"""
Knowledge Base Rebuild Utility
Rebuilds the vector store from the documents directory: load, chunk, embed, save.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragpipe.core.config import get_docs_dir, get_embedding_provider, validate_config
from ragpipe.core.errors import RAGError
from ragpipe.core.progress import BuildProgressTracker
from ragpipe.vector.retriever import RAGRetriever
from ragpipe.vector.store import SQLiteVectorStore


def main(argv=None):
    """Rebuild the knowledge base from a directory of documents."""
    parser = argparse.ArgumentParser(description="Rebuild the RAG knowledge base")
    parser.add_argument(
        "--docs-dir",
        default=None,
        help="Directory of documents to index (default: RAG_DOCS_DIR)"
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite file of the vector store (default: RAG_DB_PATH)"
    )
    parser.add_argument(
        "--keep-existing",
        action="store_true",
        help="Append to the existing index instead of clearing it first"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Chunks per embedding request (default: EMBED_BATCH_SIZE)"
    )
    args = parser.parse_args(argv)

    issues = validate_config()
    if issues:
        print("ERROR: Invalid configuration")
        for issue in issues:
            print(f"  - {issue}")
        sys.exit(1)

    docs_dir = args.docs_dir or get_docs_dir()
    print(f"Starting knowledge base rebuild from {docs_dir}...")

    progress = BuildProgressTracker()
    try:
        retriever = RAGRetriever(
            embedding_provider=get_embedding_provider(),
            vector_store=SQLiteVectorStore(args.db_path),
            progress=progress,
            batch_size=args.batch_size,
        )
        result = retriever.build_knowledge_base(docs_dir, clear_existing=not args.keep_existing)
    except (RAGError, ValueError) as e:
        print(progress.snapshot().to_console_output())
        print(f"ERROR: Knowledge base build failed: {e}")
        sys.exit(1)

    print(progress.snapshot().to_console_output())

    if result.documents == 0:
        print("No documents to index.")
    else:
        print(f"✓ Indexed {result.chunks} chunks from {result.documents} documents")
    if result.degraded:
        print(f"WARNING: {result.synthetic_chunks} chunks use synthetic embeddings; "
              "rebuild once the embedding service is healthy")

    stats = result.stats
    print(f"✓ Store contains {stats.get('total_chunks', 0)} chunks from {stats.get('sources', 0)} sources")
    print("Knowledge base rebuild complete!")


if __name__ == "__main__":
    main()
