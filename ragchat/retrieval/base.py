"""
Retriever contract shared by the brute-force and delegated-ANN implementations.

Callers pick an implementation at construction time and only ever talk to
this interface:

    await retriever.initialize()
    await retriever.load_from_file("knowledge.txt")
    chunks = await retriever.top_k_similar("What color is the sky?", k=3)
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

from loguru import logger

from ragchat.chunking.chunker import MAX_WORDS, split_into_chunks
from ragchat.chunking.schemas import Chunk, ScoredChunk
from ragchat.exceptions import CorpusLoadError
from ragchat.utils.helpers import read_text_file

DEFAULT_TOP_K = 3


class Retriever(ABC):
    """Load a corpus from a text file; answer top-k similarity queries."""

    kind: str
    chunk_words: int = MAX_WORDS

    async def initialize(self) -> None:
        """Provision backing resources. Nothing to do for in-process indexes."""

    async def load_from_file(self, path: str | Path) -> None:
        """
        Chunk, embed and index the file, replacing the previous corpus.

        Raises:
            CorpusLoadError: file unreadable; the previous corpus stays live.
        """
        text = await read_corpus(path)
        await self.load_chunks(split_into_chunks(text, self.chunk_words), source_file=str(path))

    @abstractmethod
    async def load_chunks(self, chunk_texts: Sequence[str], source_file: str) -> None:
        """Embed and index already-chunked texts as one new generation."""

    @abstractmethod
    async def top_k_with_scores(self, query: str, k: int = DEFAULT_TOP_K) -> list[ScoredChunk]:
        """Up to k (chunk, score) pairs, best first."""

    async def top_k_similar(self, query: str, k: int = DEFAULT_TOP_K) -> list[Chunk]:
        return [scored.chunk for scored in await self.top_k_with_scores(query, k)]

    @abstractmethod
    async def stats(self) -> dict:
        """Small status dict for health endpoints and the CLI."""


async def read_corpus(path: str | Path) -> str:
    """Read the knowledge file off the event loop; any failure -> CorpusLoadError."""
    try:
        return await asyncio.to_thread(read_text_file, path)
    except (OSError, UnicodeDecodeError) as exc:
        logger.error(f"[Retriever] Failed to read knowledge file {path}: {exc}")
        raise CorpusLoadError(str(path), str(exc)) from exc
