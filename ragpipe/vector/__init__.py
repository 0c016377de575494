"""
Vector pipeline - chunking, embedding, normalization, storage and retrieval.
"""

from .types import TextChunk, StoredRecord, StoredDocument, RetrievedChunk
from .chunker import DocumentChunker
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, OllamaEmbeddingProvider
from .store import IVectorStore, SQLiteVectorStore
from .retriever import RAGRetriever, BuildResult, EmbeddingState, ProviderHealth, create_retriever
from .relevance import RelevanceFilter, FilteredResults

__all__ = [
    'TextChunk',
    'StoredRecord',
    'StoredDocument',
    'RetrievedChunk',
    'DocumentChunker',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'OllamaEmbeddingProvider',
    'IVectorStore',
    'SQLiteVectorStore',
    'RAGRetriever',
    'BuildResult',
    'EmbeddingState',
    'ProviderHealth',
    'create_retriever',
    'RelevanceFilter',
    'FilteredResults'
]
