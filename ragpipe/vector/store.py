"""
Vector store - SQLite table of chunks and their normalized embeddings.

Search is a brute-force cosine scan over every stored vector. The corpora this
serves are small (tens of thousands of chunks at most), so there is no
approximate index.
"""

import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from ragpipe.core.db import get_db, init_db, health_check
from ragpipe.core.errors import VectorStoreError
from ragpipe.util.logging import logger
from .types import RetrievedChunk, StoredDocument, StoredRecord, TextChunk

EMBEDDING_DTYPE = np.dtype("<f8")
SCAN_BATCH_SIZE = 1024

RecordLike = Union[StoredRecord, Tuple[TextChunk, Sequence[float]]]


def _encode_vector(vector) -> bytes:
    return np.asarray(vector, dtype=EMBEDDING_DTYPE).reshape(-1).tobytes()


def _decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(np.float64)


def _row_to_chunk(row: sqlite3.Row) -> TextChunk:
    return TextChunk(
        text=row["chunk_text"],
        source_id=row["source_file"],
        chunk_index=row["chunk_index"],
        start_position=row["start_position"],
        end_position=row["end_position"],
        overlap=row["overlap"],
        heading_context=row["heading_context"],
    )


def _row_to_document(row: sqlite3.Row) -> StoredDocument:
    return StoredDocument(
        id=row["id"],
        chunk=_row_to_chunk(row),
        embedding=_decode_vector(row["embedding"]),
        synthetic=bool(row["synthetic"]),
    )


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    @abstractmethod
    def initialize_database(self) -> None:
        """Create the backing table if needed. Idempotent."""
        pass

    @abstractmethod
    def clear_index(self) -> None:
        """Remove all records from the store."""
        pass

    @abstractmethod
    def save_batch(self, records: Iterable[RecordLike]) -> int:
        """Insert records atomically: all of them become visible or none do."""
        pass

    @abstractmethod
    def search(self, query_vector, top_k: int = 5) -> List[RetrievedChunk]:
        """Return up to top_k chunks by descending cosine similarity."""
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Aggregate counts: total_chunks, sources, files."""
        pass

    @abstractmethod
    def delete_source(self, source_id: str) -> int:
        """Remove every record of one source document."""
        pass

    @abstractmethod
    def get_dimension(self) -> Optional[int]:
        """Dimension shared by stored vectors, None when empty."""
        pass


class SQLiteVectorStore(IVectorStore):
    """SQLite-backed implementation of IVectorStore."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Args:
            db_path: SQLite file path, defaults to RAG_DB_PATH
        """
        self.db_path = db_path

    def initialize_database(self) -> None:
        try:
            init_db(self.db_path)
        except sqlite3.Error as e:
            raise VectorStoreError(f"Failed to initialize vector store: {e}") from e
        logger.debug("Vector store initialized")

    def clear_index(self) -> None:
        try:
            with get_db(self.db_path) as conn:
                with conn:
                    cursor = conn.execute("DELETE FROM documents")
                    deleted = cursor.rowcount
        except sqlite3.Error as e:
            logger.log_store_operation("clear", status="failed", details={"error": str(e)})
            raise VectorStoreError(f"Failed to clear vector store: {e}") from e
        logger.log_store_operation("clear", count=deleted)

    def delete_source(self, source_id: str) -> int:
        """Delete every chunk of one source document. Returns rows removed."""
        try:
            with get_db(self.db_path) as conn:
                with conn:
                    cursor = conn.execute("DELETE FROM documents WHERE source_file = ?", (source_id,))
                    deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise VectorStoreError(f"Failed to delete chunks of {source_id}: {e}") from e
        logger.log_store_operation("delete_source", count=deleted, details={"source_id": source_id})
        return deleted

    def save_batch(self, records: Iterable[RecordLike]) -> int:
        """
        Insert a batch of (chunk, vector) records in a single transaction.

        Args:
            records: StoredRecord instances or (chunk, vector) tuples

        Returns:
            Number of rows written

        Raises:
            ValueError: vectors are empty or their dimension differs within the
                batch or from the vectors already stored
            VectorStoreError: the write failed; nothing from the batch is kept
        """
        prepared = []
        dimension = None
        for item in records:
            record = item if isinstance(item, StoredRecord) else StoredRecord(*item)
            vector = np.asarray(record.vector, dtype=np.float64).reshape(-1)
            if vector.size == 0:
                raise ValueError(f"Empty vector for chunk {record.chunk.chunk_index} of {record.chunk.source_id}")
            if dimension is None:
                dimension = vector.size
            elif vector.size != dimension:
                raise ValueError(f"Vector dimension {vector.size} does not match batch dimension {dimension}")
            prepared.append((record, vector))

        if not prepared:
            return 0

        try:
            with get_db(self.db_path) as conn:
                existing = self._stored_dimension(conn)
                if existing is not None and existing != dimension:
                    raise ValueError(f"Vector dimension {dimension} does not match stored dimension {existing}")

                with conn:
                    conn.executemany('''
                        INSERT INTO documents (
                            chunk_text, source_file, chunk_index, start_position, end_position,
                            overlap, heading_context, token_count, dimension, embedding, synthetic
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ''', [
                        (
                            record.chunk.text,
                            record.chunk.source_id,
                            record.chunk.chunk_index,
                            record.chunk.start_position,
                            record.chunk.end_position,
                            record.chunk.overlap,
                            record.chunk.heading_context,
                            record.chunk.token_count,
                            vector.size,
                            _encode_vector(vector),
                            record.synthetic,
                        )
                        for record, vector in prepared
                    ])
        except sqlite3.Error as e:
            logger.log_store_operation("save_batch", count=len(prepared), status="failed", details={"error": str(e)})
            raise VectorStoreError(f"Failed to save batch of {len(prepared)} chunks: {e}") from e

        logger.log_store_operation("save_batch", count=len(prepared))
        return len(prepared)

    def search(self, query_vector, top_k: int = 5) -> List[RetrievedChunk]:
        """
        Rank every stored chunk by cosine similarity to the query vector.

        Ties keep insertion order. Stored or query vectors with zero norm score 0.0.

        Raises:
            ValueError: query dimension differs from the stored vectors
        """
        if top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        query_norm = np.linalg.norm(query)

        ids: List[np.ndarray] = []
        scores: List[np.ndarray] = []
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.execute("SELECT id, dimension, embedding FROM documents ORDER BY id")
                while True:
                    rows = cursor.fetchmany(SCAN_BATCH_SIZE)
                    if not rows:
                        break
                    for row in rows:
                        if row["dimension"] != query.size:
                            raise ValueError(
                                f"Query dimension {query.size} does not match stored dimension {row['dimension']}"
                            )
                    matrix = np.vstack([_decode_vector(row["embedding"]) for row in rows])
                    ids.append(np.array([row["id"] for row in rows], dtype=np.int64))
                    scores.append(self._cosine_scores(matrix, query, query_norm))

                if not ids:
                    return []

                all_ids = np.concatenate(ids)
                all_scores = np.concatenate(scores)
                order = np.argsort(-all_scores, kind="stable")[:top_k]
                selected = [int(all_ids[i]) for i in order]

                placeholders = ",".join("?" * len(selected))
                cursor = conn.execute(
                    f"SELECT * FROM documents WHERE id IN ({placeholders})", selected
                )
                chunks_by_id = {row["id"]: _row_to_chunk(row) for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise VectorStoreError(f"Vector search failed: {e}") from e

        results = [
            RetrievedChunk(chunk=chunks_by_id[int(all_ids[i])], similarity=float(all_scores[i]), id=int(all_ids[i]))
            for i in order
        ]
        logger.debug(f"Search returned {len(results)} results")
        return results

    @staticmethod
    def _cosine_scores(matrix: np.ndarray, query: np.ndarray, query_norm: float) -> np.ndarray:
        if query_norm == 0:
            return np.zeros(matrix.shape[0])
        norms = np.linalg.norm(matrix, axis=1)
        dots = matrix @ query
        scores = np.zeros(matrix.shape[0])
        nonzero = norms > 0
        scores[nonzero] = dots[nonzero] / (norms[nonzero] * query_norm)
        return scores

    def get_stats(self) -> Dict[str, Any]:
        try:
            with get_db(self.db_path) as conn:
                total = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
                files = [row[0] for row in conn.execute(
                    "SELECT DISTINCT source_file FROM documents ORDER BY source_file"
                ).fetchall()]
        except sqlite3.Error as e:
            raise VectorStoreError(f"Failed to read vector store stats: {e}") from e

        return {
            "total_chunks": total,
            "sources": len(files),
            "files": files,
        }

    def get_all_documents(self) -> List[StoredDocument]:
        """Every stored row in insertion order."""
        with get_db(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM documents ORDER BY id").fetchall()
        return [_row_to_document(row) for row in rows]

    def get_documents_by_source(self, source_id: str) -> List[StoredDocument]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM documents WHERE source_file = ? ORDER BY chunk_index, id", (source_id,)
            ).fetchall()
        return [_row_to_document(row) for row in rows]

    def get_dimension(self) -> Optional[int]:
        """Dimension shared by stored vectors, None when the store is empty."""
        with get_db(self.db_path) as conn:
            return self._stored_dimension(conn)

    def health_check(self) -> bool:
        return health_check(self.db_path)

    @staticmethod
    def _stored_dimension(conn: sqlite3.Connection) -> Optional[int]:
        row = conn.execute("SELECT dimension FROM documents LIMIT 1").fetchone()
        return row[0] if row else None
