"""
Pipeline configuration - environment driven, with .env support.
Chunking options are a closed, validated model rather than an open map.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

load_dotenv()

# Storage and corpus locations
DB_PATH = os.getenv("RAG_DB_PATH", "./data/documents.db")
DOCS_DIR = os.getenv("RAG_DOCS_DIR", "./data/docs")
DOC_EXTENSIONS = os.getenv("RAG_DOC_EXTENSIONS", ".md,.txt")

# Embedding service
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "ollama")  # ollama|hash
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
EMBED_MODEL = os.getenv("EMBED_MODEL", "nomic-embed-text")
EMBED_TIMEOUT_SEC = float(os.getenv("EMBED_TIMEOUT_SEC", "300"))
EMBED_DIM = int(os.getenv("EMBED_DIM", "768"))  # nomic-embed-text width
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "1"))

# Chunking (token-estimate units, 1 token ~ 4 characters)
CHUNK_TARGET_SIZE = int(os.getenv("CHUNK_TARGET_SIZE", "750"))
CHUNK_OVERLAP_SIZE = int(os.getenv("CHUNK_OVERLAP_SIZE", "75"))
CHUNK_MARKDOWN_AWARE = os.getenv("CHUNK_MARKDOWN_AWARE", "true").lower() == "true"

# Retrieval
RAG_TOP_K = int(os.getenv("RAG_TOP_K", "5"))
RAG_MIN_SIMILARITY = float(os.getenv("RAG_MIN_SIMILARITY", "0.25"))
RAG_OPTIMAL_SIMILARITY = float(os.getenv("RAG_OPTIMAL_SIMILARITY", "0.40"))
RAG_HEADING_BOOST = float(os.getenv("RAG_HEADING_BOOST", "0.15"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

VERSION = "1.0.0"

VALID_EMBED_PROVIDERS = ["ollama", "hash"]


class ChunkerConfig(BaseModel):
    """Recognized chunking options. Sizes are in estimated tokens."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    target_chunk_size: int = 750
    overlap_size: int = 75
    markdown_aware: bool = True

    @field_validator('target_chunk_size')
    @classmethod
    def target_must_be_positive(cls, v):
        if v <= 0:
            raise ValueError('target_chunk_size must be positive')
        return v

    @field_validator('overlap_size')
    @classmethod
    def overlap_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('overlap_size cannot be negative')
        return v

    @model_validator(mode='after')
    def overlap_must_fit_in_chunk(self):
        # The cut point is never placed before half the target, so the overlap
        # has to stay below that to guarantee forward progress.
        if self.overlap_size * 2 >= self.target_chunk_size:
            raise ValueError('overlap_size must be less than half of target_chunk_size')
        return self


def get_chunker_config() -> ChunkerConfig:
    """Build the chunker configuration from the current environment."""
    return ChunkerConfig(
        target_chunk_size=int(os.getenv("CHUNK_TARGET_SIZE", str(CHUNK_TARGET_SIZE))),
        overlap_size=int(os.getenv("CHUNK_OVERLAP_SIZE", str(CHUNK_OVERLAP_SIZE))),
        markdown_aware=os.getenv("CHUNK_MARKDOWN_AWARE", "true" if CHUNK_MARKDOWN_AWARE else "false").lower() == "true",
    )


def get_db_path() -> str:
    """Get the SQLite path for the vector store."""
    return os.getenv("RAG_DB_PATH", DB_PATH)


def get_docs_dir() -> str:
    return os.getenv("RAG_DOCS_DIR", DOCS_DIR)


def get_doc_extensions() -> List[str]:
    """Get loaded file extensions, lowercased and dot-prefixed."""
    raw = os.getenv("RAG_DOC_EXTENSIONS", DOC_EXTENSIONS)
    extensions = []
    for ext in raw.split(","):
        ext = ext.strip().lower()
        if not ext:
            continue
        extensions.append(ext if ext.startswith(".") else f".{ext}")
    return extensions


def get_embed_dimension() -> int:
    return int(os.getenv("EMBED_DIM", str(EMBED_DIM)))


def get_embed_batch_size() -> int:
    return int(os.getenv("EMBED_BATCH_SIZE", str(EMBED_BATCH_SIZE)))


def get_embedding_provider():
    """Get the configured embedding provider implementation."""
    provider = os.getenv("EMBED_PROVIDER", EMBED_PROVIDER).lower()

    if provider == "hash":
        from ragpipe.vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(dimension=get_embed_dimension())

    from ragpipe.vector.embeddings import OllamaEmbeddingProvider
    return OllamaEmbeddingProvider(
        base_url=os.getenv("OLLAMA_BASE_URL", OLLAMA_BASE_URL),
        model=os.getenv("EMBED_MODEL", EMBED_MODEL),
        timeout=float(os.getenv("EMBED_TIMEOUT_SEC", str(EMBED_TIMEOUT_SEC))),
    )


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate pipeline configuration and return any issues."""
    issues = []

    provider = os.getenv("EMBED_PROVIDER", EMBED_PROVIDER).lower()
    if provider not in VALID_EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {provider}")

    try:
        get_chunker_config()
    except ValueError as e:
        issues.append(f"Invalid chunking configuration: {e}")

    if get_embed_dimension() < 1:
        issues.append("EMBED_DIM must be >= 1")

    if get_embed_batch_size() < 1:
        issues.append("EMBED_BATCH_SIZE must be >= 1")

    if RAG_TOP_K < 1:
        issues.append("RAG_TOP_K must be >= 1")

    for name, value in (("RAG_MIN_SIMILARITY", RAG_MIN_SIMILARITY),
                        ("RAG_OPTIMAL_SIMILARITY", RAG_OPTIMAL_SIMILARITY)):
        if not 0.0 <= value <= 1.0:
            issues.append(f"{name} must be within [0, 1]: {value}")

    if RAG_MIN_SIMILARITY > RAG_OPTIMAL_SIMILARITY:
        issues.append("RAG_MIN_SIMILARITY must not exceed RAG_OPTIMAL_SIMILARITY")

    if not get_doc_extensions():
        issues.append("RAG_DOC_EXTENSIONS must list at least one extension")

    return issues
