"""
Structured logging for pipeline operations - builds, embedding fallback, store writes and queries.
"""

import logging
from typing import Any, Dict, List

from ragpipe.core.config import LOG_LEVEL


def _truncate(text: str, limit: int = 50) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class StructuredLogger:
    """Structured logger for knowledge base operations."""

    def __init__(self, name: str = "ragpipe"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_build_event(self, phase: str, status: str = "started", details: Dict[str, Any] = None):
        """Log a knowledge base build phase event."""
        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(f"build.{phase}", status, details, level=level)

    def log_embedding_fallback(self, source_id: str, chunk_index: int, reason: str):
        """Log the switch from the embedding service to synthetic vectors."""
        details = {
            "source_id": source_id,
            "chunk_index": chunk_index,
            "reason": _truncate(reason, 100)
        }
        self.log_operation("embedding.fallback", "degraded", details, level=logging.WARNING)

    def log_store_operation(self, operation: str, count: int = None, status: str = "success", details: Dict[str, Any] = None):
        """Log a vector store operation."""
        log_details = {}
        if count is not None:
            log_details["count"] = count
        if details:
            log_details.update(details)

        level = logging.ERROR if status == "failed" else logging.INFO
        self.log_operation(f"store.{operation}", status, log_details, level=level)

    def log_query(self, query: str, top_k: int, result_count: int, top_similarity: float = None):
        """Log a retrieval query. Query text is truncated."""
        details = {
            "query": _truncate(query),
            "top_k": top_k,
            "results": result_count
        }
        if top_similarity is not None:
            details["top_similarity"] = round(top_similarity, 4)

        self.log_operation("retrieval.query", "success", details)

    def log_skipped_documents(self, skipped: List[str]):
        """Log documents that could not be read during loading."""
        if skipped:
            self.log_operation("build.load", "partial", {"skipped": skipped}, level=logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
