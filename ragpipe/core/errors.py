"""
Exception taxonomy for the pipeline.
Build-fatal conditions, per-item embedding failures and storage failures each get their own type.
"""


class RAGError(Exception):
    """Base exception for pipeline operations."""
    pass


class ConfigurationError(RAGError):
    """Invalid or missing configuration."""
    pass


class SourceDirectoryError(ConfigurationError):
    """Document source directory is missing or not a directory."""
    pass


class EmbeddingError(RAGError):
    """Embedding request failed, timed out or returned a malformed response."""
    pass


class EmbeddingServiceUnavailableError(EmbeddingError):
    """Embedding service did not answer the liveness check."""
    pass


class VectorStoreError(RAGError):
    """Vector store read or write failed."""
    pass


class BuildInProgressError(RAGError):
    """A knowledge base build is already running in this process."""
    pass
