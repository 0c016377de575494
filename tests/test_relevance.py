"""
Tests for relevance filtering and heading-boost reranking.
"""

import pytest

from ragpipe.vector.relevance import FilteredResults, RelevanceFilter, extract_keywords
from ragpipe.vector.types import RetrievedChunk, TextChunk


def _hit(similarity, heading=None, source_id="doc.md", index=0):
    chunk = TextChunk(text=f"chunk {index}", source_id=source_id, chunk_index=index, heading_context=heading)
    return RetrievedChunk(chunk=chunk, similarity=similarity, id=index + 1)


@pytest.fixture
def relevance():
    return RelevanceFilter(min_similarity=0.25, optimal_similarity=0.40)


class TestFilterAndRank:

    def test_no_results(self, relevance):
        result = relevance.filter_and_rank([], "anything")

        assert isinstance(result, FilteredResults)
        assert result.relevant_chunks == []
        assert result.quality_score == 0.0
        assert "No results" in result.suggestion

    def test_split_by_threshold(self, relevance):
        hits = [_hit(0.9, index=0), _hit(0.25, index=1), _hit(0.1, index=2)]

        result = relevance.filter_and_rank(hits, "query")

        assert [h.chunk.chunk_index for h in result.relevant_chunks] == [0, 1]
        assert [h.chunk.chunk_index for h in result.filtered_out_chunks] == [2]

    def test_high_quality(self, relevance):
        hits = [_hit(0.9, index=0), _hit(0.8, index=1), _hit(0.1, index=2)]

        result = relevance.filter_and_rank(hits, "query")

        # 0.6 * 0.8 + 0.2 * 0.4 + 0.2 * (0.65 / 0.75)
        assert result.quality_score == pytest.approx(0.48 + 0.08 + 0.2 * 0.65 / 0.75)
        assert result.suggestion.startswith("✅")

    def test_medium_quality_mentions_filtered_count(self, relevance):
        hits = [_hit(0.6, index=i) for i in range(5)] + [_hit(0.1, index=5)]

        result = relevance.filter_and_rank(hits, "query")

        assert 0.5 <= result.quality_score < 0.7
        assert "Filtered out 1" in result.suggestion

    def test_high_score_below_optimal_similarity_is_medium(self):
        strict = RelevanceFilter(min_similarity=0.0, optimal_similarity=0.95)
        hits = [_hit(0.9, index=i) for i in range(5)]

        result = strict.filter_and_rank(hits, "query")

        assert result.quality_score == pytest.approx(0.92)
        assert result.suggestion.startswith("⚠️ Medium relevance")

    def test_low_quality(self, relevance):
        result = relevance.filter_and_rank([_hit(0.3)], "query")

        assert result.quality_score < 0.5
        assert "Low relevance" in result.suggestion

    def test_nothing_relevant(self, relevance):
        result = relevance.filter_and_rank([_hit(0.1), _hit(0.2, index=1)], "query")

        assert result.relevant_chunks == []
        assert len(result.filtered_out_chunks) == 2
        assert result.quality_score == 0.0
        assert "No relevant results" in result.suggestion

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            RelevanceFilter(min_similarity=1.0)


class TestHeadingBoost:

    def test_keywords(self):
        assert extract_keywords("How do I install the CLI on Linux") == ["install", "cli", "linux"]

    def test_boost_reorders(self, relevance):
        hits = [_hit(0.6, heading=None, index=0), _hit(0.5, heading="Installation > Linux", index=1)]

        reranked = relevance.rerank_with_heading_boost(hits, "linux installation steps", boost=0.15)

        assert [h.chunk.chunk_index for h in reranked] == [1, 0]
        assert reranked[0].similarity == pytest.approx(0.8)
        assert reranked[1].similarity == pytest.approx(0.6)

    def test_boost_capped(self, relevance):
        reranked = relevance.rerank_with_heading_boost([_hit(0.95, heading="Linux setup")], "linux setup")
        assert reranked[0].similarity == 1.0

    def test_input_not_mutated(self, relevance):
        hits = [_hit(0.5, heading="Linux")]
        relevance.rerank_with_heading_boost(hits, "linux")
        assert hits[0].similarity == 0.5

    def test_ties_keep_order(self, relevance):
        hits = [_hit(0.5, index=0), _hit(0.5, index=1), _hit(0.5, index=2)]
        reranked = relevance.rerank_with_heading_boost(hits, "nothing matches here")
        assert [h.chunk.chunk_index for h in reranked] == [0, 1, 2]
