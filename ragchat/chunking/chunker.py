"""
Word-Window Chunker
--------------------
Splits the raw knowledge file into fixed-size word windows.

Words are whitespace-delimited tokens; each window holds at most
`max_words` of them, joined by single spaces.  Windows never overlap and the
last one may be shorter.  Empty (or whitespace-only) input produces no
chunks at all.
"""
from __future__ import annotations

from typing import Iterable

from ragchat.chunking.schemas import Chunk

# ── Constants ─────────────────────────────────────────────────────────────────

MAX_WORDS = 250


def split_into_chunks(text: str, max_words: int = MAX_WORDS) -> list[str]:
    """
    Group the words of `text` into consecutive windows of `max_words`.

    Args:
        text: Corpus text. Non-str input is a caller bug and raises TypeError.
        max_words: Window size in words (>= 1).

    Returns:
        Ordered list of chunk strings.
    """
    if not isinstance(text, str):
        raise TypeError(f"Expected str, got {type(text).__name__}")
    if max_words < 1:
        raise ValueError("max_words must be >= 1")

    words = text.split()
    return [" ".join(words[i: i + max_words]) for i in range(0, len(words), max_words)]


def build_chunks(texts: Iterable[str], source_file: str) -> list[Chunk]:
    """Wrap chunk texts into Chunk records with sequential ids (chunk_0, chunk_1, ...)."""
    return [
        Chunk(id=f"chunk_{idx}", text=text, source_index=idx, source_file=source_file)
        for idx, text in enumerate(texts)
    ]
