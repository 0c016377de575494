"""
Record types shared by the chunker, the vector store and the retriever.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

CHARS_PER_TOKEN = 4


def estimate_token_count(text: str) -> int:
    """Approximate token count (1 token ~ 4 characters). For budgeting only."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class TextChunk:
    """A contiguous slice of a source document."""

    text: str
    """Exact slice content[start_position:end_position]"""

    source_id: str
    """Originating document identifier (file name)"""

    chunk_index: int = 0
    """Position within the document's chunk sequence"""

    start_position: int = 0

    end_position: int = 0

    overlap: int = 0
    """Leading characters shared with the previous chunk of the same document"""

    heading_context: Optional[str] = None
    """Heading path in effect where the chunk's new content begins"""

    @property
    def token_count(self) -> int:
        return estimate_token_count(self.text)

    @property
    def new_text(self) -> str:
        """The part of the chunk not repeated from the previous chunk."""
        return self.text[self.overlap:]


@dataclass
class StoredRecord:
    """A chunk paired with its normalized embedding, ready for the store."""

    chunk: TextChunk
    vector: np.ndarray
    synthetic: bool = False
    """True when the vector came from the synthetic fallback"""


@dataclass
class StoredDocument:
    """A persisted row read back from the store."""

    id: int
    chunk: TextChunk
    embedding: np.ndarray
    synthetic: bool = False


@dataclass
class RetrievedChunk:
    """A search hit. Produced by search only, never persisted."""

    chunk: TextChunk
    similarity: float
    id: int = 0

    @property
    def text(self) -> str:
        return self.chunk.text

    @property
    def source_id(self) -> str:
        return self.chunk.source_id

    @property
    def heading_context(self) -> Optional[str]:
        return self.chunk.heading_context

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view consumed by the chat layer."""
        return {
            "text": self.chunk.text,
            "source_id": self.chunk.source_id,
            "chunk_index": self.chunk.chunk_index,
            "heading_context": self.chunk.heading_context,
            "similarity": float(self.similarity),
        }
