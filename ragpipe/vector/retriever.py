"""
RAG retriever - coordinates the build path (load -> chunk -> embed -> normalize -> store)
and the query path (embed -> normalize -> search).
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ragpipe.core.config import (
    RAG_TOP_K,
    get_chunker_config,
    get_doc_extensions,
    get_embed_batch_size,
    get_embed_dimension,
    get_embedding_provider,
)
from ragpipe.core.errors import (
    BuildInProgressError,
    ConfigurationError,
    EmbeddingError,
    EmbeddingServiceUnavailableError,
    SourceDirectoryError,
)
from ragpipe.core.progress import BuildPhase, BuildProgressTracker
from ragpipe.util.logging import logger
from .chunker import DocumentChunker
from .embeddings import IEmbeddingProvider
from .normalizer import generate_synthetic_embedding, normalize_min_max
from .store import IVectorStore, SQLiteVectorStore
from .types import RetrievedChunk, StoredRecord, TextChunk

# One build at a time per process
_BUILD_LOCK = threading.Lock()


@contextmanager
def _exclusive_build():
    if not _BUILD_LOCK.acquire(blocking=False):
        raise BuildInProgressError("A knowledge base build is already running")
    try:
        yield
    finally:
        _BUILD_LOCK.release()


class ProviderHealth(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class EmbeddingState:
    """Accumulator threaded through the per-chunk embedding loop.

    Once DEGRADED, every remaining chunk of the build gets a synthetic vector
    of `dimension` and the embedding service is not called again.
    """

    health: ProviderHealth = ProviderHealth.HEALTHY
    dimension: Optional[int] = None


@dataclass
class BuildResult:
    """Outcome of a build or single-file index run."""

    documents: int = 0
    chunks: int = 0
    synthetic_chunks: int = 0
    degraded: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)


class RAGRetriever:
    """
    Knowledge base coordinator.
    Builds the vector store from a directory of documents and answers similarity queries.
    """

    def __init__(self, embedding_provider: IEmbeddingProvider,
                 vector_store: Optional[IVectorStore] = None,
                 chunker: Optional[DocumentChunker] = None,
                 progress: Optional[BuildProgressTracker] = None,
                 doc_extensions: Optional[Sequence[str]] = None,
                 batch_size: Optional[int] = None,
                 synthetic_dimension: Optional[int] = None):
        """
        Args:
            embedding_provider: Service used for both build and query embeddings
            vector_store: Store to build into, defaults to SQLiteVectorStore at RAG_DB_PATH
            chunker: Defaults to a DocumentChunker from the environment configuration
            progress: Tracker observing builds; a private one is created if omitted
            doc_extensions: File extensions loaded from the source directory
            batch_size: Chunks per embedding request during a build
            synthetic_dimension: Fallback vector width when neither the provider nor the store knows it
        """
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store if vector_store is not None else SQLiteVectorStore()
        self.chunker = chunker or DocumentChunker(get_chunker_config())
        self.progress = progress or BuildProgressTracker()
        self.doc_extensions = [e.lower() for e in (doc_extensions or get_doc_extensions())]
        self.batch_size = max(1, batch_size or get_embed_batch_size())
        self.synthetic_dimension = synthetic_dimension or get_embed_dimension()

        self.vector_store.initialize_database()

    def build_knowledge_base(self, source_directory, clear_existing: bool = True) -> BuildResult:
        """
        Build the knowledge base from every document in a directory.

        The embedding service must be reachable when the build starts. If it
        fails later, the failing chunk and all remaining chunks get synthetic
        embeddings and the build still completes.

        Args:
            source_directory: Flat directory of UTF-8 text documents
            clear_existing: Remove all previously stored chunks first

        Returns:
            BuildResult with counts and final store stats

        Raises:
            BuildInProgressError: another build is running in this process
            EmbeddingServiceUnavailableError: liveness check failed
            SourceDirectoryError: directory missing
            VectorStoreError: storage failed
        """
        with _exclusive_build():
            self.progress.start_build()
            logger.log_build_event("knowledge_base", "started", {
                "source_directory": str(source_directory),
                "clear_existing": clear_existing
            })
            try:
                return self._run_build(source_directory, clear_existing)
            except Exception as e:
                self._fail_build(e)
                raise

    def reload_knowledge_base(self, source_directory) -> BuildResult:
        """Full rebuild: clear the store and build again from the directory."""
        logger.info(f"Reloading knowledge base from: {source_directory}")
        return self.build_knowledge_base(source_directory, clear_existing=True)

    def index_file(self, file_path, replace: bool = True) -> BuildResult:
        """
        Chunk, embed and store a single document.

        Args:
            file_path: Path of the document; its file name is the source id
            replace: Delete the document's previously stored chunks first
        """
        with _exclusive_build():
            self.progress.start_build()
            logger.log_build_event("index_file", "started", {"file": str(file_path), "replace": replace})
            try:
                path = Path(file_path)
                if not path.is_file():
                    raise ConfigurationError(f"File does not exist: {path}")
                dimension = self._require_available()

                self.progress.start_phase(BuildPhase.LOADING_DOCUMENTS, 1)
                content = path.read_text(encoding="utf-8")
                self.progress.update(1)

                if replace:
                    removed = self.vector_store.delete_source(path.name)
                    self.progress.add_log(f"🗑️  Removed {removed} previous chunks of {path.name}")

                self.progress.start_phase(BuildPhase.CHUNKING, 1)
                chunks = self.chunker.chunk_text(content, path.name)
                self.progress.update(1)
                self.progress.add_log(f"✂️  Created {len(chunks)} chunks")

                return self._embed_and_store(chunks, document_count=1, dimension=dimension)
            except Exception as e:
                self._fail_build(e)
                raise

    def retrieve_relevant(self, query: str, top_k: int = RAG_TOP_K) -> List[RetrievedChunk]:
        """
        Retrieve the chunks most similar to a query.

        There is no synthetic fallback here: a query embedding failure is
        raised to the caller rather than answered with unrelated neighbors.

        Raises:
            EmbeddingError: the query could not be embedded
        """
        query_vector = self.embedding_provider.embed_text(query)
        normalized = normalize_min_max(query_vector)
        results = self.vector_store.search(normalized, top_k)

        logger.log_query(query, top_k, len(results), results[0].similarity if results else None)
        return results

    def get_stats(self) -> Dict[str, Any]:
        return self.vector_store.get_stats()

    def load_documents(self, source_directory) -> Dict[str, str]:
        """
        Read every matching file of a directory (non-recursive).

        Unreadable or non-UTF-8 files are skipped with a warning.

        Returns:
            Mapping of file name to content, in file name order
        """
        directory = Path(source_directory)
        if not directory.is_dir():
            raise SourceDirectoryError(f"Directory does not exist: {directory}")

        candidates = sorted(
            p for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in self.doc_extensions
        )
        self.progress.start_phase(BuildPhase.LOADING_DOCUMENTS, len(candidates))

        documents = {}
        skipped = []
        for i, path in enumerate(candidates, 1):
            try:
                documents[path.name] = path.read_text(encoding="utf-8")
                logger.debug(f"Loaded document: {path.name} ({len(documents[path.name])} characters)")
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable document {path.name}: {e}")
                skipped.append(path.name)
            self.progress.update(i)

        logger.log_skipped_documents(skipped)
        return documents

    def _run_build(self, source_directory, clear_existing: bool) -> BuildResult:
        dimension = self._require_available()
        self.progress.add_log("✅ Embedding service verified")

        if clear_existing:
            self.progress.add_log("🗑️  Clearing previous index...")
            self.vector_store.clear_index()

        documents = self.load_documents(source_directory)
        if not documents:
            logger.warning(f"No documents found in {source_directory}")
            self.progress.add_log(f"No documents found in {source_directory}")
            self.progress.complete()
            return BuildResult(stats=self.vector_store.get_stats())

        self.progress.add_log(f"📄 Loaded {len(documents)} documents")
        logger.log_build_event("load", "completed", {"documents": len(documents)})

        self.progress.start_phase(BuildPhase.CHUNKING, len(documents))
        chunks: List[TextChunk] = []
        for i, (source_id, content) in enumerate(documents.items(), 1):
            chunks.extend(self.chunker.chunk_text(content, source_id))
            self.progress.update(i)
        self.progress.add_log(f"✂️  Created {len(chunks)} chunks")

        return self._embed_and_store(chunks, document_count=len(documents), dimension=dimension)

    def _embed_and_store(self, chunks: List[TextChunk], document_count: int,
                         dimension: Optional[int] = None) -> BuildResult:
        self.progress.start_phase(BuildPhase.EMBEDDING, len(chunks))
        self.progress.add_log(f"⚡ Generating embeddings for {len(chunks)} chunks...")
        records, state = self._embed_chunks(chunks, dimension)

        self.progress.start_phase(BuildPhase.SAVING, len(records))
        self.progress.add_log(f"💾 Saving {len(records)} chunks to database...")
        self.vector_store.save_batch(records)
        self.progress.update(len(records))

        stats = self.vector_store.get_stats()
        result = BuildResult(
            documents=document_count,
            chunks=len(records),
            synthetic_chunks=sum(1 for r in records if r.synthetic),
            degraded=state.health is ProviderHealth.DEGRADED,
            stats=stats,
        )

        self.progress.complete()
        self.progress.add_log(f"✨ Knowledge base built successfully! Stats: {stats}")
        logger.log_build_event("knowledge_base", "completed", {
            "documents": result.documents,
            "chunks": result.chunks,
            "synthetic_chunks": result.synthetic_chunks,
            "total_chunks": stats.get("total_chunks")
        })
        return result

    def _embed_chunks(self, chunks: List[TextChunk],
                      dimension: Optional[int] = None) -> Tuple[List[StoredRecord], EmbeddingState]:
        """Embed chunks in order, folding provider health through the loop.

        `dimension` is the provider-reported width, if known; real vectors must
        match it and synthetic vectors take it.
        """
        state = EmbeddingState(dimension=dimension)
        records: List[StoredRecord] = []

        for offset in range(0, len(chunks), self.batch_size):
            group = chunks[offset:offset + self.batch_size]
            vectors, state = self._embed_group(group, state)
            synthetic = state.health is ProviderHealth.DEGRADED
            for chunk, vector in zip(group, vectors):
                records.append(StoredRecord(chunk=chunk, vector=normalize_min_max(vector), synthetic=synthetic))
            self.progress.update(len(records))

        return records, state

    def _embed_group(self, group: List[TextChunk], state: EmbeddingState) -> Tuple[List[np.ndarray], EmbeddingState]:
        if state.health is ProviderHealth.DEGRADED:
            return [generate_synthetic_embedding(c.text, state.dimension) for c in group], state

        try:
            if len(group) == 1:
                raw = [self.embedding_provider.embed_text(group[0].text)]
            else:
                raw = self.embedding_provider.embed_batch([c.text for c in group])
            vectors = self._validate_vectors(raw, len(group), state.dimension)
        except Exception as e:
            first = group[0]
            logger.log_embedding_fallback(first.source_id, first.chunk_index, str(e))
            self.progress.mark_degraded()
            self.progress.add_log(f"⚠️ Embedding service failed, switching to synthetic embeddings: {e}")
            degraded = EmbeddingState(ProviderHealth.DEGRADED, state.dimension or self._fallback_dimension())
            return [generate_synthetic_embedding(c.text, degraded.dimension) for c in group], degraded

        return vectors, EmbeddingState(ProviderHealth.HEALTHY, vectors[0].size)

    @staticmethod
    def _validate_vectors(raw, expected: int, dimension: Optional[int]) -> List[np.ndarray]:
        vectors = [np.asarray(v, dtype=np.float64).reshape(-1) for v in raw]
        if len(vectors) != expected:
            raise EmbeddingError(f"Expected {expected} embeddings but got {len(vectors)}")
        for vector in vectors:
            if vector.size == 0:
                raise EmbeddingError("Embedding service returned an empty vector")
            if vector.size != (dimension or vectors[0].size):
                raise EmbeddingError(f"Embedding dimension changed to {vector.size} mid-build")
        return vectors

    def _fallback_dimension(self) -> int:
        """Width of synthetic vectors when the provider width is still unknown."""
        return self.vector_store.get_dimension() or self.synthetic_dimension

    def _require_available(self) -> Optional[int]:
        """Liveness gate. Returns the provider's embedding width, None when unknown."""
        if not self.embedding_provider.is_available():
            raise EmbeddingServiceUnavailableError(
                f"Embedding service is not available ({type(self.embedding_provider).__name__})"
            )
        return self.embedding_provider.get_dimension()

    def _fail_build(self, error: Exception):
        message = str(error) or type(error).__name__
        self.progress.error(message)
        self.progress.add_log(f"❌ Build failed: {message}")
        logger.log_build_event("knowledge_base", "failed", {"error": message})


def create_retriever(db_path: Optional[str] = None,
                     progress: Optional[BuildProgressTracker] = None) -> RAGRetriever:
    """Retriever wired from the environment configuration."""
    return RAGRetriever(
        embedding_provider=get_embedding_provider(),
        vector_store=SQLiteVectorStore(db_path),
        progress=progress,
    )
