"""
Brute-Force Retriever
----------------------
Exact in-process search: every query scores every stored chunk by cosine
similarity, O(n * d).  Right for small corpora where simplicity beats an ANN
index.

The corpus lives in one immutable CorpusSnapshot (chunks + read-only vector
matrix, index-aligned).  A reload builds a complete new snapshot and swaps it
in with a single reference assignment; a query grabs the reference once up
front, so it sees either the old generation or the new one, never a mix.

Reloads are serialised by an internal lock.  Callers should still not issue
overlapping reloads and expect a particular winner.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np
from langsmith import traceable
from loguru import logger

from ragchat.chunking.chunker import MAX_WORDS, build_chunks
from ragchat.chunking.schemas import Chunk, ScoredChunk
from ragchat.embedding.embedder import Embedder
from ragchat.embedding.similarity import cosine_similarity_matrix
from ragchat.exceptions import NotInitializedError
from ragchat.retrieval.base import DEFAULT_TOP_K, Retriever
from ragchat.utils.helpers import truncate_text


@dataclass(frozen=True)
class CorpusSnapshot:
    """One loaded generation. Never mutated after construction."""

    chunks: tuple[Chunk, ...]
    vectors: np.ndarray
    source_file: str
    generation: int
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if len(self.chunks) != self.vectors.shape[0]:
            raise ValueError(
                f"Mismatch: {len(self.chunks)} chunks vs {self.vectors.shape[0]} vectors"
            )
        self.vectors.setflags(write=False)

    def __len__(self) -> int:
        return len(self.chunks)


class BruteForceRetriever(Retriever):
    """Exact cosine top-k over an in-memory snapshot."""

    kind = "memory"

    def __init__(self, embedder: Embedder, chunk_words: int = MAX_WORDS) -> None:
        self.embedder = embedder
        self.chunk_words = chunk_words
        self._snapshot: Optional[CorpusSnapshot] = None
        self._generation = 0
        self._reload_lock = asyncio.Lock()
        logger.info(f"[MemoryRetriever] Initialised | embedder={embedder.provider.provider_id}")

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def snapshot(self) -> Optional[CorpusSnapshot]:
        return self._snapshot

    async def load_chunks(self, chunk_texts: Sequence[str], source_file: str) -> None:
        """
        Embed `chunk_texts`, build a new generation and swap it in.

        Raises:
            ProviderError: embedding failed; the previous generation stays live.
        """
        async with self._reload_lock:
            logger.info(f"[MemoryRetriever] Generating embeddings for {len(chunk_texts)} chunks...")
            vectors = await self.embedder.embed(chunk_texts)

            snapshot = CorpusSnapshot(
                chunks=tuple(build_chunks(chunk_texts, source_file=source_file)),
                vectors=np.array(vectors, dtype=np.float32, copy=True),
                source_file=source_file,
                generation=self._generation + 1,
            )
            self._snapshot = snapshot
            self._generation = snapshot.generation

        logger.info(
            f"[MemoryRetriever] Loaded {len(snapshot)} chunks into memory "
            f"| generation={snapshot.generation} | source={source_file}"
        )

    @traceable(name="retrieve", run_type="retriever")
    async def top_k_with_scores(self, query: str, k: int = DEFAULT_TOP_K) -> list[ScoredChunk]:
        snapshot = self._snapshot
        if snapshot is None:
            raise NotInitializedError("In-memory retriever has no corpus loaded. Call load_from_file() first.")
        if k <= 0 or len(snapshot) == 0:
            return []

        query_vec = await self.embedder.embed_query(query)
        scores = cosine_similarity_matrix(snapshot.vectors, query_vec)
        # stable sort keeps load order among equal scores
        order = np.argsort(-scores, kind="stable")[:k]
        results = [ScoredChunk(snapshot.chunks[i], float(scores[i])) for i in order]

        logger.info(
            f"[MemoryRetriever] Query {truncate_text(query)!r} | scanned {len(snapshot)} chunks "
            f"| returned {len(results)} (top score: {results[0].score:.4f})"
        )
        return results

    async def stats(self) -> dict:
        snapshot = self._snapshot
        return {
            "kind": self.kind,
            "loaded": snapshot is not None,
            "count": len(snapshot) if snapshot else 0,
            "generation": snapshot.generation if snapshot else 0,
            "source_file": snapshot.source_file if snapshot else None,
            "dimension": self.embedder.dimension,
        }
