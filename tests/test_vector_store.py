"""
Test cases for the SQLite vector store.
"""

import sqlite3

import numpy as np
import pytest
from unittest.mock import patch

from ragpipe.core.db import health_check
from ragpipe.core.errors import VectorStoreError
from ragpipe.vector.store import SQLiteVectorStore
from ragpipe.vector.types import StoredRecord, TextChunk


@pytest.fixture
def store(tmp_path):
    store = SQLiteVectorStore(str(tmp_path / "vectors.db"))
    store.initialize_database()
    return store


def _chunk(source_id, index, text=None, heading=None):
    return TextChunk(
        text=text or f"{source_id} chunk {index}",
        source_id=source_id,
        chunk_index=index,
        start_position=index * 10,
        end_position=index * 10 + 10,
        heading_context=heading,
    )


def test_initialize_is_idempotent(store):
    store.initialize_database()
    assert store.health_check()
    assert store.get_stats() == {"total_chunks": 0, "sources": 0, "files": []}


def test_save_batch_and_read_back(store):
    records = [
        StoredRecord(_chunk("a.md", 0, heading="Intro"), np.array([1.0, 0.0, 0.0])),
        StoredRecord(_chunk("a.md", 1), np.array([0.0, 1.0, 0.0]), synthetic=True),
    ]

    assert store.save_batch(records) == 2

    documents = store.get_all_documents()
    assert [d.chunk.chunk_index for d in documents] == [0, 1]
    assert documents[0].chunk == records[0].chunk
    assert documents[0].chunk.heading_context == "Intro"
    assert np.array_equal(documents[1].embedding, [0.0, 1.0, 0.0])
    assert documents[0].synthetic is False
    assert documents[1].synthetic is True


def test_save_batch_accepts_tuples(store):
    assert store.save_batch([(_chunk("t.md", 0), [0.5, 0.5])]) == 1
    assert store.get_dimension() == 2


def test_save_empty_batch(store):
    assert store.save_batch([]) == 0
    assert store.get_stats()["total_chunks"] == 0


def test_mixed_dimensions_in_batch_rejected(store):
    with pytest.raises(ValueError, match="batch dimension"):
        store.save_batch([(_chunk("a.md", 0), [1.0, 0.0]), (_chunk("a.md", 1), [1.0, 0.0, 0.0])])
    assert store.get_stats()["total_chunks"] == 0


def test_dimension_must_match_stored(store):
    store.save_batch([(_chunk("a.md", 0), [1.0, 0.0])])

    with pytest.raises(ValueError, match="stored dimension"):
        store.save_batch([(_chunk("b.md", 0), [1.0, 0.0, 0.0])])


def test_failed_write_keeps_nothing(store):
    store.save_batch([(_chunk("a.md", 0), [1.0, 0.0])])

    # Second row violates NOT NULL on source_file after the first was inserted
    broken = TextChunk(text="orphan", source_id=None, chunk_index=1)
    with pytest.raises(VectorStoreError):
        store.save_batch([(_chunk("b.md", 0), [0.0, 1.0]), (broken, [1.0, 1.0])])

    assert store.get_stats()["total_chunks"] == 1
    assert store.get_stats()["files"] == ["a.md"]


def test_connection_failure_wrapped(store):
    with patch('ragpipe.vector.store.get_db', side_effect=sqlite3.OperationalError("unable to open database file")):
        with pytest.raises(VectorStoreError, match="unable to open"):
            store.get_stats()


def test_search_orders_by_similarity(store):
    store.save_batch([
        (_chunk("a.md", 0), [1.0, 0.0, 0.0]),
        (_chunk("b.md", 0), [0.0, 1.0, 0.0]),
        (_chunk("c.md", 0), [0.7, 0.7, 0.0]),
    ])

    results = store.search([1.0, 0.1, 0.0], top_k=3)

    assert [r.source_id for r in results] == ["a.md", "c.md", "b.md"]
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


def test_search_limits_results(store):
    store.save_batch([(_chunk("a.md", i), [1.0, float(i)]) for i in range(10)])

    assert len(store.search([1.0, 1.0], top_k=3)) == 3
    assert len(store.search([1.0, 1.0], top_k=50)) == 10
    assert store.search([1.0, 1.0], top_k=0) == []


def test_search_ties_keep_insertion_order(store):
    store.save_batch([(_chunk("a.md", i), [1.0, 1.0]) for i in range(4)])

    results = store.search([2.0, 2.0], top_k=4)

    assert [r.chunk.chunk_index for r in results] == [0, 1, 2, 3]
    assert all(r.similarity == pytest.approx(1.0) for r in results)


def test_search_empty_store(store):
    assert store.search([1.0, 0.0], top_k=5) == []


def test_search_zero_vectors_score_zero(store):
    store.save_batch([(_chunk("a.md", 0), [0.0, 0.0]), (_chunk("a.md", 1), [1.0, 0.0])])

    results = store.search([1.0, 0.0], top_k=2)
    assert results[0].chunk.chunk_index == 1
    assert results[1].similarity == 0.0

    assert all(r.similarity == 0.0 for r in store.search([0.0, 0.0], top_k=2))


def test_search_dimension_mismatch(store):
    store.save_batch([(_chunk("a.md", 0), [1.0, 0.0])])

    with pytest.raises(ValueError, match="Query dimension"):
        store.search([1.0, 0.0, 0.0], top_k=1)


def test_stats_and_clear(store):
    store.save_batch([(_chunk("b.md", 0), [1.0, 0.0]), (_chunk("a.md", 0), [0.0, 1.0]), (_chunk("a.md", 1), [1.0, 1.0])])

    assert store.get_stats() == {"total_chunks": 3, "sources": 2, "files": ["a.md", "b.md"]}

    store.clear_index()
    assert store.get_stats()["total_chunks"] == 0
    assert store.get_dimension() is None


def test_delete_source(store):
    store.save_batch([(_chunk("a.md", 0), [1.0, 0.0]), (_chunk("b.md", 0), [0.0, 1.0])])

    assert store.delete_source("a.md") == 1
    assert store.get_stats()["files"] == ["b.md"]
    assert store.get_documents_by_source("a.md") == []
    assert len(store.get_documents_by_source("b.md")) == 1


def test_retrieved_chunk_to_dict(store):
    store.save_batch([(_chunk("a.md", 0, text="hello world", heading="Greeting"), [1.0, 0.0])])

    result = store.search([1.0, 0.0], top_k=1)[0].to_dict()

    assert result == {
        "text": "hello world",
        "source_id": "a.md",
        "chunk_index": 0,
        "heading_context": "Greeting",
        "similarity": pytest.approx(1.0),
    }


def test_health_check_missing_table(tmp_path):
    assert health_check(str(tmp_path / "fresh.db")) is False
