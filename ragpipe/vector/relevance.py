"""
Relevance filtering and reranking of retrieved chunks.
"""

import re
from dataclasses import dataclass, field, replace
from typing import List

from ragpipe.core.config import RAG_HEADING_BOOST, RAG_MIN_SIMILARITY, RAG_OPTIMAL_SIMILARITY
from ragpipe.util.logging import logger
from .types import RetrievedChunk

# Number of relevant chunks that earns the full count score
OPTIMAL_CHUNK_COUNT = 5

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "was", "were", "what", "which", "who", "whom",
    "how", "why", "when", "where", "does", "did", "can", "could", "should",
    "would", "this", "that", "these", "those", "with", "from", "into", "about",
    "there", "their", "have", "has", "had", "not", "but", "you", "your", "any",
    "all", "its", "our", "out", "get", "use",
})


@dataclass
class FilteredResults:
    relevant_chunks: List[RetrievedChunk] = field(default_factory=list)
    filtered_out_chunks: List[RetrievedChunk] = field(default_factory=list)
    quality_score: float = 0.0
    """0-1, higher is better"""
    suggestion: str = ""


def extract_keywords(text: str) -> List[str]:
    """Lowercased whitespace-separated terms longer than two characters, minus stop words."""
    return [
        word for word in re.split(r"\s+", text.lower())
        if len(word) > 2 and word not in STOP_WORDS
    ]


class RelevanceFilter:
    """Splits search hits by a similarity threshold and scores the overall result quality.

    Results only count as high quality when the best hit reaches
    `optimal_similarity`; otherwise the score caps the verdict at medium.
    """

    def __init__(self, min_similarity: float = RAG_MIN_SIMILARITY,
                 optimal_similarity: float = RAG_OPTIMAL_SIMILARITY):
        if not 0.0 <= min_similarity < 1.0:
            raise ValueError(f"min_similarity must be in [0, 1): {min_similarity}")
        self.min_similarity = min_similarity
        self.optimal_similarity = optimal_similarity

    def filter_and_rank(self, chunks: List[RetrievedChunk], query: str) -> FilteredResults:
        """
        Separate chunks at or above the similarity threshold from the rest.

        Args:
            chunks: Search hits, already ranked
            query: The query that produced them

        Returns:
            FilteredResults with a quality score and an operator-facing suggestion
        """
        if not chunks:
            return FilteredResults(suggestion="No results found. Try rephrasing the question.")

        relevant = [c for c in chunks if c.similarity >= self.min_similarity]
        filtered_out = [c for c in chunks if c.similarity < self.min_similarity]

        avg_similarity = sum(c.similarity for c in relevant) / len(relevant) if relevant else 0.0
        quality_score = self._quality_score(relevant, avg_similarity)
        suggestion = self._suggestion(relevant, filtered_out, quality_score)

        logger.log_operation("retrieval.filter", "success", {
            "query": query[:50],
            "relevant": len(relevant),
            "filtered_out": len(filtered_out),
            "quality_score": round(quality_score, 4),
            "avg_similarity": round(avg_similarity, 4)
        })

        return FilteredResults(
            relevant_chunks=relevant,
            filtered_out_chunks=filtered_out,
            quality_score=quality_score,
            suggestion=suggestion,
        )

    def rerank_with_heading_boost(self, chunks: List[RetrievedChunk], query: str,
                                  boost: float = RAG_HEADING_BOOST) -> List[RetrievedChunk]:
        """
        Boost chunks whose heading path mentions query keywords.

        Each matching keyword adds `boost` to the similarity, capped at 1.0.
        Returns new RetrievedChunk objects sorted by boosted similarity; ties
        keep their input order.
        """
        keywords = extract_keywords(query)

        boosted = []
        for chunk in chunks:
            heading = (chunk.heading_context or "").lower()
            matches = sum(1 for keyword in keywords if keyword in heading)
            similarity = min(chunk.similarity + boost * matches, 1.0) if matches else chunk.similarity
            boosted.append(replace(chunk, similarity=similarity))

        return sorted(boosted, key=lambda c: c.similarity, reverse=True)

    def _normalize(self, similarity: float) -> float:
        return (similarity - self.min_similarity) / (1.0 - self.min_similarity)

    def _quality_score(self, relevant: List[RetrievedChunk], avg_similarity: float) -> float:
        if not relevant:
            return 0.0

        count_score = min(len(relevant) / OPTIMAL_CHUNK_COUNT, 1.0)
        max_similarity = max(c.similarity for c in relevant)

        return (self._normalize(avg_similarity) * 0.6
                + count_score * 0.2
                + self._normalize(max_similarity) * 0.2)

    def _suggestion(self, relevant: List[RetrievedChunk], filtered_out: List[RetrievedChunk],
                    quality_score: float) -> str:
        quality = f"{quality_score * 100:.1f}%"
        best = max((c.similarity for c in relevant), default=0.0)

        if not relevant:
            return (f"❌ No relevant results (all below threshold {self.min_similarity}). "
                    "Try rephrasing the question or adding details.")
        # "High" also needs one hit at or above the optimal similarity
        if quality_score >= 0.7 and best >= self.optimal_similarity:
            return f"✅ High quality results found (quality: {quality})"
        if quality_score >= 0.5:
            if filtered_out:
                return (f"⚠️ Medium relevance results (quality: {quality}). "
                        f"Filtered out {len(filtered_out)} less relevant chunks.")
            return (f"⚠️ Medium relevance results (quality: {quality}). "
                    "Try a more specific question for better results.")
        return (f"⚠️ Low relevance results (quality: {quality}). "
                "Consider rephrasing the question or using different keywords.")
