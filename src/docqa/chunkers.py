"""
chunkers.py — Fixed-size overlapping chunks
============================================

HOW IT WORKS:
  A cursor walks the text. Each step takes the next `chunk_size`
  characters, then moves forward by `chunk_size - overlap`. So the last
  `overlap` characters of chunk N are the first `overlap` of chunk N+1.

    text:    AAAA BBBB CCCC        chunk_size=5, overlap=2, step=3
    chunks:  [AAAA ]
                [A BBB]
                   [BBB C]
                      [ CCCC]
                         [CC]

WHY OVERLAP:
  A sentence cut at a boundary still appears whole in one of the two
  neighbours. It wastes some tokens; it's worth it.

Forward progress:
  If overlap >= chunk_size the step would be zero or negative and the
  loop would never end. In that case the cursor jumps to the end of the
  slice it just took (no overlap at all rather than an infinite loop).

It cuts mid-word. That's fine here: the ranker only needs most words of
a chunk intact, and the model reads the joined context anyway.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Chunk:
    """A slice of the document text. Position = chunk_id in the sequence."""
    text: str
    chunk_id: int

    @property
    def char_count(self) -> int:
        return len(self.text)

    def __repr__(self):
        preview = self.text[:60].replace('\n', ' ')
        return f"Chunk(id={self.chunk_id}, chars={self.char_count}, text={preview!r}...)"


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Split text into overlapping slices covering it start to end."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0:
        raise ValueError("overlap must not be negative")

    chunks = []
    if not text:
        return chunks

    step = chunk_size - overlap
    start = 0
    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunks.append(text[start:end])
        start = start + step if step > 0 else end

    return chunks


class FixedSizeChunker:
    """chunk_text() with settings attached, producing Chunk objects."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0:
            raise ValueError("overlap must not be negative")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, text: str) -> list[Chunk]:
        return [
            Chunk(text=piece, chunk_id=i)
            for i, piece in enumerate(chunk_text(text, self.chunk_size, self.overlap))
        ]


def chunks_from_texts(texts: list[str]) -> list[Chunk]:
    """Wrap pre-split texts (e.g. the built-in sample) as Chunks."""
    return [Chunk(text=t, chunk_id=i) for i, t in enumerate(texts)]
