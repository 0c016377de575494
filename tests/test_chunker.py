"""
Tests for the rolling-window document chunker.
"""

import pytest

from ragpipe.core.config import ChunkerConfig
from ragpipe.vector.chunker import DocumentChunker
from ragpipe.vector.types import TextChunk, estimate_token_count


@pytest.fixture
def small_chunker():
    """100-character target, 20-character overlap, markdown aware."""
    return DocumentChunker(ChunkerConfig(target_chunk_size=25, overlap_size=5, markdown_aware=True))


@pytest.fixture
def plain_chunker():
    return DocumentChunker(ChunkerConfig(target_chunk_size=25, overlap_size=5, markdown_aware=False))


def _long_text():
    sentences = [f"Sentence number {i} talks about topic {i % 7}." for i in range(60)]
    paragraphs = [" ".join(sentences[i:i + 6]) for i in range(0, 60, 6)]
    return "\n\n".join(paragraphs)


def _rebuild(chunks):
    return chunks[0].text + "".join(c.new_text for c in chunks[1:])


class TestChunkInvariants:
    """Coverage, size and overlap properties."""

    def test_chunks_rebuild_document(self, small_chunker):
        content = _long_text()
        chunks = small_chunker.chunk_text(content, "doc.md")

        assert len(chunks) > 1
        assert _rebuild(chunks) == content

    def test_chunks_are_exact_slices(self, small_chunker):
        content = _long_text()
        for chunk in small_chunker.chunk_text(content, "doc.md"):
            assert chunk.text == content[chunk.start_position:chunk.end_position]
            assert chunk.text

    def test_chunk_size_bound(self, small_chunker):
        chunks = small_chunker.chunk_text(_long_text(), "doc.md")
        assert all(len(c.text) <= small_chunker.target_chars for c in chunks)

    def test_overlap_matches_previous_chunk(self, small_chunker):
        chunks = small_chunker.chunk_text(_long_text(), "doc.md")

        assert chunks[0].overlap == 0
        for previous, current in zip(chunks, chunks[1:]):
            assert current.overlap == small_chunker.overlap_chars
            assert current.start_position == previous.end_position - current.overlap
            assert current.text[:current.overlap] == previous.text[-current.overlap:]

    def test_chunk_indices_are_sequential(self, small_chunker):
        chunks = small_chunker.chunk_text(_long_text(), "doc.md")
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.source_id == "doc.md" for c in chunks)

    def test_text_without_whitespace_is_cut_at_target(self, plain_chunker):
        content = "x" * 250
        chunks = plain_chunker.chunk_text(content, "blob.txt")

        assert chunks[0].end_position == 100
        assert _rebuild(chunks) == content


class TestEdgeCases:

    def test_empty_document(self, small_chunker):
        assert small_chunker.chunk_text("", "empty.md") == []

    def test_whitespace_only_document(self, small_chunker):
        assert small_chunker.chunk_text("   \n\n\t  ", "blank.md") == []

    def test_short_document_is_single_chunk(self, small_chunker):
        chunks = small_chunker.chunk_text("Just a short note.", "note.txt")

        assert len(chunks) == 1
        assert chunks[0].text == "Just a short note."
        assert chunks[0].overlap == 0
        assert chunks[0].end_position == len("Just a short note.")

    def test_chunk_documents_preserves_order(self, small_chunker):
        chunks = small_chunker.chunk_documents({"a.md": "alpha", "b.md": "", "c.md": "gamma"})
        assert [(c.source_id, c.text) for c in chunks] == [("a.md", "alpha"), ("c.md", "gamma")]


class TestBoundaryPreference:

    def test_cut_prefers_heading_start(self, small_chunker):
        content = "# Alpha\n" + "a " * 30 + "\n# Beta\n" + "b " * 60
        chunks = small_chunker.chunk_text(content, "guide.md")

        heading_pos = content.index("# Beta")
        assert chunks[0].end_position == heading_pos
        assert chunks[1].new_text.startswith("# Beta")

    def test_cut_prefers_paragraph_break(self, plain_chunker):
        content = "alpha " * 12 + "\n\n" + "beta " * 30
        chunks = plain_chunker.chunk_text(content, "notes.txt")

        assert chunks[0].end_position == 74
        assert chunks[0].text.endswith("\n\n")

    def test_cut_never_inside_heading_line(self, small_chunker):
        body = "word " * 17
        content = body + "\n## A rather long heading title here\n" + "text " * 40
        chunks = small_chunker.chunk_text(content, "doc.md")

        start = content.index("## A rather")
        end = content.index("\n", start)
        for chunk in chunks:
            assert not (start < chunk.end_position < end)
        assert _rebuild(chunks) == content

    def test_heading_longer_than_window_is_kept_whole(self, small_chunker):
        intro = "intro " * 4 + "intro\n"
        heading = ("# " + "long heading words " * 6).rstrip()
        content = intro + heading + "\n" + "body " * 30
        chunks = small_chunker.chunk_text(content, "doc.md")

        heading_end = len(intro) + len(heading)
        assert heading_end > small_chunker.target_chars
        assert chunks[0].end_position == heading_end
        for chunk in chunks:
            assert not (len(intro) < chunk.end_position < heading_end)
        assert _rebuild(chunks) == content


class TestHeadingContext:

    def test_heading_path_is_tracked(self, small_chunker):
        content = (
            "# Intro\n\n" + "intro words " * 10 + "\n\n"
            "## Setup\n\n" + "setup steps " * 10 + "\n\n"
            "# Reference\n\n" + "reference text " * 10
        )
        chunks = small_chunker.chunk_text(content, "manual.md")
        contexts = [c.heading_context for c in chunks]

        assert contexts[0] == "Intro"
        assert "Intro > Setup" in contexts
        assert contexts[-1] == "Reference"

    def test_headings_in_code_fences_are_ignored(self, small_chunker):
        content = "```\n# not a heading\n```\nplain text after code"
        chunks = small_chunker.chunk_text(content, "code.md")

        assert len(chunks) == 1
        assert chunks[0].heading_context is None

    def test_markdown_disabled_has_no_heading_context(self, plain_chunker):
        content = "# Title\n\n" + "body text " * 40
        chunks = plain_chunker.chunk_text(content, "doc.md")
        assert all(c.heading_context is None for c in chunks)


class TestChunkerConfig:

    def test_defaults(self):
        chunker = DocumentChunker()
        assert chunker.target_chars == 3000
        assert chunker.overlap_chars == 300

    def test_overlap_too_large_rejected(self):
        with pytest.raises(ValueError):
            ChunkerConfig(target_chunk_size=100, overlap_size=50)

    def test_non_positive_target_rejected(self):
        with pytest.raises(ValueError):
            ChunkerConfig(target_chunk_size=0, overlap_size=0)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ValueError):
            ChunkerConfig(target_chunk_size=100, overlap_size=-1)


def test_token_count_estimate():
    chunk = TextChunk(text="abcdefghi", source_id="x")
    assert chunk.token_count == 3
    assert estimate_token_count("") == 0
