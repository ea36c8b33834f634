"""
sparse.py — Keyword-overlap retrieval
======================================

This is NOT semantic search and not even BM25. It's the simplest thing
that works for "ask questions about one PDF":

  1. Query keywords = lowercase words longer than 2 characters
     ("what is the gemini pro" -> {what, the, gemini, pro})
  2. Chunk words    = lowercase words, whitespace-split
  3. Score          = how many query keywords appear in the chunk
  4. Sort by score (ties keep document order), drop zeros, take top N

No IDF, no stemming, punctuation stays glued to words ("pro." != "pro").
A known approximation, good enough to pick a handful of chunks out of
a few dozen.

Two special cases:
  - Blank query  -> first N chunks. Used to give the suggestion generator
                    a representative slice of the document.
  - Nothing hits -> first 3 chunks (always 3, whatever N is). The model
                    gets SOME context and can say it found no answer.

Usage:
  from docqa.sparse import get_relevant_chunks
  top = get_relevant_chunks("gemini pro context window", chunks, count=5)
"""

from docqa.chunkers import Chunk


MIN_KEYWORD_LENGTH = 3
FALLBACK_COUNT = 3


def _query_keywords(query: str) -> set[str]:
    """Lowercase, whitespace-split, keep words longer than 2 chars."""
    return {w for w in query.lower().split() if len(w) >= MIN_KEYWORD_LENGTH}


def _chunk_words(text: str) -> set[str]:
    return set(text.lower().split())


def score_chunk(keywords: set[str], chunk: Chunk) -> int:
    """Number of query keywords present in the chunk."""
    return len(keywords & _chunk_words(chunk.text))


def rank_chunks(query: str, chunks: list[Chunk]) -> list[dict]:
    """
    Score every chunk against the query.

    Returns list of {chunk, score, rank} sorted by descending score.
    Includes zero-score chunks; callers decide what to drop.
    """
    keywords = _query_keywords(query)
    scored = [{"chunk": c, "score": score_chunk(keywords, c)} for c in chunks]

    # sorted() is stable, reverse=True included, so ties keep document order
    scored = sorted(scored, key=lambda r: r["score"], reverse=True)
    for rank, r in enumerate(scored, 1):
        r["rank"] = rank
    return scored


def get_relevant_chunks(query: str, chunks: list[Chunk], count: int = 5) -> list[Chunk]:
    """Top `count` chunks for the query, most relevant first."""
    if not query.strip():
        return list(chunks[:count])

    hits = [r["chunk"] for r in rank_chunks(query, chunks) if r["score"] > 0]
    top = hits[:count]

    if not top and chunks:
        return list(chunks[:FALLBACK_COUNT])
    return top


def build_context(chunks: list[Chunk]) -> str:
    """Join chunk texts into the context block handed to the model."""
    return "\n\n".join(c.text for c in chunks)
