"""
Document chunker - splits text into overlapping, size-bounded chunks.

Chunks are exact slices of the source text. Each chunk after the first starts
with the last `overlap_size` tokens (estimated) of its predecessor, so
chunks[0].text followed by every later chunk's new_text rebuilds the document.
In markdown-aware mode cuts prefer heading starts and paragraph breaks, never
fall inside a heading line, and every chunk carries its heading path.
"""

import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Mapping, Optional

from ragpipe.core.config import ChunkerConfig
from ragpipe.util.logging import logger
from .types import CHARS_PER_TOKEN, TextChunk

HEADING_RE = re.compile(r'^(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$')
FENCE_PREFIXES = ("```", "~~~")
PARAGRAPH_RE = re.compile(r'\n[ \t]*\n')
SENTENCE_RE = re.compile(r'[.!?]+["\')\]]*\s+')
WHITESPACE_RE = re.compile(r'\s+')


@dataclass
class _Heading:
    start: int
    end: int  # end of the heading line, newline excluded
    level: int
    title: str


def _scan_headings(content: str) -> List[_Heading]:
    """Find markdown ATX headings, skipping fenced code blocks."""
    headings = []
    in_fence = False
    pos = 0
    for line in content.splitlines(keepends=True):
        bare = line.rstrip("\r\n")
        stripped = bare.strip()
        if stripped.startswith(FENCE_PREFIXES):
            in_fence = not in_fence
        elif not in_fence:
            match = HEADING_RE.match(bare)
            if match:
                headings.append(_Heading(pos, pos + len(bare), len(match.group(1)), match.group(2).strip()))
        pos += len(line)
    return headings


def _heading_path(headings: List[_Heading], position: int) -> Optional[str]:
    """Heading path (outermost first) open at the given character position."""
    stack: List[_Heading] = []
    for heading in headings:
        if heading.start > position:
            break
        while stack and stack[-1].level >= heading.level:
            stack.pop()
        stack.append(heading)
    if not stack:
        return None
    return " > ".join(h.title for h in stack)


def _last_in_range(positions: List[int], lo: int, hi: int) -> Optional[int]:
    i = bisect_right(positions, hi) - 1
    if i >= 0 and positions[i] >= lo:
        return positions[i]
    return None


class DocumentChunker:
    """Rolling-window chunker with configurable size, overlap and markdown awareness."""

    def __init__(self, config: ChunkerConfig = None):
        self.config = config or ChunkerConfig()
        self.target_chars = self.config.target_chunk_size * CHARS_PER_TOKEN
        self.overlap_chars = self.config.overlap_size * CHARS_PER_TOKEN
        # A cut never lands before this distance from the window start
        self.min_chunk_chars = max(self.overlap_chars + 1, self.target_chars // 2)

    def chunk_text(self, content: str, source_id: str) -> List[TextChunk]:
        """
        Split one document into overlapping chunks.

        Args:
            content: Document text
            source_id: Identifier stored on every chunk (usually the file name)

        Returns:
            Ordered chunks; empty when the document is empty or whitespace only
        """
        if not content or not content.strip():
            return []

        markdown = self.config.markdown_aware
        headings = _scan_headings(content) if markdown else []
        boundaries = self._boundary_classes(content, headings)

        chunks = []
        n = len(content)
        start = 0
        overlap = 0

        while True:
            if n - start <= self.target_chars:
                end = n
            else:
                end = self._find_cut(start, boundaries, headings)

            chunks.append(TextChunk(
                text=content[start:end],
                source_id=source_id,
                chunk_index=len(chunks),
                start_position=start,
                end_position=end,
                overlap=overlap,
                heading_context=_heading_path(headings, start + overlap) if markdown else None,
            ))

            if end >= n:
                break

            start = end - self.overlap_chars
            overlap = end - start

        logger.debug(f"Created {len(chunks)} chunks from {source_id} ({n} characters)")
        return chunks

    def chunk_documents(self, documents: Mapping[str, str]) -> List[TextChunk]:
        """Chunk every document; order is preserved within each document."""
        all_chunks = []
        for source_id, content in documents.items():
            all_chunks.extend(self.chunk_text(content, source_id))
        logger.info(f"Total chunks created: {len(all_chunks)} from {len(documents)} documents")
        return all_chunks

    def _boundary_classes(self, content: str, headings: List[_Heading]) -> List[List[int]]:
        """Candidate cut positions, most preferred class first."""
        classes = []
        if headings:
            classes.append([h.start for h in headings])
        classes.append([m.end() for m in PARAGRAPH_RE.finditer(content)])
        classes.append([m.end() for m in SENTENCE_RE.finditer(content)])
        classes.append([m.end() for m in WHITESPACE_RE.finditer(content)])
        return classes

    def _find_cut(self, start: int, boundaries: List[List[int]], headings: List[_Heading]) -> int:
        lo = start + self.min_chunk_chars
        hi = start + self.target_chars

        cut = hi
        for positions in boundaries:
            candidate = _last_in_range(positions, lo, hi)
            if candidate is not None:
                cut = candidate
                break

        for heading in headings:
            if heading.start < cut < heading.end:
                # Move before the heading line, else past it even if the chunk outgrows the window
                cut = heading.start if heading.start >= lo else heading.end
                break

        return cut
