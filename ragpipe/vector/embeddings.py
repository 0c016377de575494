"""
Embedding providers - the boundary to the external embedding service.
Providers report failures as EmbeddingError and never retry; retry and fallback
policy belongs to the caller.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
import ollama

from ragpipe.core.config import EMBED_DIM, EMBED_MODEL, EMBED_TIMEOUT_SEC, OLLAMA_BASE_URL
from ragpipe.core.errors import EmbeddingError
from ragpipe.util.logging import logger
from .normalizer import generate_synthetic_embedding


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def is_available(self) -> bool:
        """Best-effort liveness check. Must not raise."""
        pass

    @abstractmethod
    def embed_text(self, text: str) -> np.ndarray:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Generate one vector per text. Any failure fails the whole batch."""
        pass

    def get_dimension(self) -> Optional[int]:
        """Dimension of the embedding vectors, if known without a request."""
        return None


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Offline provider backed by the synthetic embedding.

    Always available and fully reproducible, which makes it useful for
    development and tests without a running embedding service.
    """

    def __init__(self, dimension: int = EMBED_DIM):
        self.dimension = dimension

    def is_available(self) -> bool:
        return True

    def embed_text(self, text: str) -> np.ndarray:
        return generate_synthetic_embedding(text, self.dimension)

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        return [self.embed_text(text) for text in texts]

    def get_dimension(self) -> Optional[int]:
        return self.dimension


class OllamaEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider for a local or remote Ollama server.

    Uses the /api/embed endpoint (single or list input) and /api/tags as the
    liveness check. The request timeout keeps calls from hanging indefinitely.
    """

    def __init__(self, base_url: str = OLLAMA_BASE_URL, model: str = EMBED_MODEL,
                 timeout: float = EMBED_TIMEOUT_SEC):
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self._client = None
        self._dimension = None

    @property
    def client(self):
        if self._client is None:
            self._client = ollama.Client(host=self.base_url, timeout=self.timeout)
        return self._client

    def is_available(self) -> bool:
        try:
            self.client.list()
            return True
        except Exception as e:
            logger.warning(f"Ollama service is not available at {self.base_url}: {e}")
            return False

    def embed_text(self, text: str) -> np.ndarray:
        """Generate embedding vector for a single text."""
        return self._embed([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Generate embeddings for several texts in one request."""
        if not texts:
            return []
        return self._embed(list(texts))

    def get_dimension(self) -> Optional[int]:
        """
        Embedding width of the configured model.

        Known after the first successful request; before that it is read from
        the model metadata (/api/show, "<arch>.embedding_length"). None when
        neither is available.
        """
        if self._dimension is None:
            self._dimension = self._model_dimension()
        return self._dimension

    def _model_dimension(self) -> Optional[int]:
        try:
            response = self.client.show(self.model)
        except Exception as e:
            logger.warning(f"Could not read metadata of model {self.model}: {e}")
            return None

        if isinstance(response, dict):
            model_info = response.get("model_info")
        else:
            model_info = getattr(response, "modelinfo", None)

        for key, value in dict(model_info or {}).items():
            if key.endswith(".embedding_length"):
                try:
                    return int(value)
                except (TypeError, ValueError):
                    return None
        return None

    def _embed(self, texts: List[str]) -> List[np.ndarray]:
        payload = texts[0] if len(texts) == 1 else texts
        try:
            response = self.client.embed(model=self.model, input=payload)
        except ollama.ResponseError as e:
            raise EmbeddingError(f"Ollama returned {e.status_code} for model {self.model}: {e.error}") from e
        except Exception as e:
            raise EmbeddingError(f"Embedding request to {self.base_url} failed: {e}") from e

        vectors = self._parse_embeddings(response, len(texts))
        self._dimension = vectors[0].size
        logger.debug(f"Generated {len(vectors)} embeddings, vector size: {self._dimension}")
        return vectors

    def _parse_embeddings(self, response, expected: int) -> List[np.ndarray]:
        try:
            raw = response["embeddings"]
        except (KeyError, TypeError) as e:
            raise EmbeddingError("Malformed embedding response: missing 'embeddings'") from e

        if not raw:
            raise EmbeddingError("No embeddings returned from Ollama")
        if len(raw) != expected:
            raise EmbeddingError(f"Expected {expected} embeddings but got {len(raw)}")

        vectors = []
        for item in raw:
            try:
                vector = np.asarray(item, dtype=np.float64).reshape(-1)
            except (TypeError, ValueError) as e:
                raise EmbeddingError(f"Malformed embedding vector: {e}") from e
            if vector.size == 0 or not np.all(np.isfinite(vector)):
                raise EmbeddingError("Malformed embedding vector: empty or non-finite values")
            vectors.append(vector)

        if len({v.size for v in vectors}) != 1:
            raise EmbeddingError("Embedding batch has inconsistent dimensions")
        return vectors
