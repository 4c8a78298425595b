"""
Delegated ANN Retriever
------------------------
Keeps the corpus in an external vector store (HNSW in Chroma) and only does
the translation work on this side:

  load_from_file : chunk + embed, then upsert with collision-free ids
                   `<source-stem>_<chunkIndex>_<loadTimestampMs>`; once the
                   new generation is in, every other id in the collection is
                   deleted so a reload replaces the corpus.  The collection
                   is owned by this retriever: records left by an earlier
                   process, or by a load whose cleanup failed, are swept on
                   the next successful upsert.
  top_k_similar  : embed the query through the cache path, ask the store for
                   k neighbours, turn the hits back into Chunks.

Results are eventually consistent with the last successful upsert.  Nothing
works until initialize() has opened the collection.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import Sequence

from langsmith import traceable
from loguru import logger

from ragchat.chunking.chunker import MAX_WORDS
from ragchat.chunking.schemas import Chunk, ScoredChunk
from ragchat.embedding.embedder import Embedder
from ragchat.exceptions import NotInitializedError
from ragchat.retrieval.base import DEFAULT_TOP_K, Retriever
from ragchat.retrieval.vector_store import IndexParams, StoreHit, VectorStore
from ragchat.utils.helpers import truncate_text


def _distance_to_score(space: str, distance: float) -> float:
    """Chroma reports distances; cosine/ip distances are 1 - similarity."""
    if space == "l2":
        return -distance
    return 1.0 - distance


class AnnRetriever(Retriever):
    """Approximate top-k backed by a VectorStore."""

    kind = "chromadb"

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        params: IndexParams | None = None,
        chunk_words: int = MAX_WORDS,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.params = params or IndexParams()
        self.chunk_words = chunk_words
        self._initialized = False
        self._loaded = False
        self._last_load_ms = 0
        logger.info(
            f"[AnnRetriever] Configured | store={store.name} | "
            f"embedder={embedder.provider.provider_id}"
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(
                "Vector store not initialized. Call initialize() first.",
                {"store": self.store.name},
            )

    async def initialize(self) -> None:
        await self.store.open(self.params)
        self._initialized = True

    def _next_load_stamp(self) -> int:
        # strictly increasing so two loads in the same millisecond still get distinct ids
        stamp = max(int(time.time() * 1000), self._last_load_ms + 1)
        self._last_load_ms = stamp
        return stamp

    async def load_from_file(self, path: str | Path) -> None:
        self._require_initialized()
        await super().load_from_file(path)

    async def load_chunks(self, chunk_texts: Sequence[str], source_file: str) -> None:
        self._require_initialized()

        logger.info(f"[AnnRetriever] Generating embeddings for {len(chunk_texts)} chunks...")
        vectors = await self.embedder.embed(chunk_texts)

        stamp = self._next_load_stamp()
        stem = Path(source_file).stem or "corpus"
        chunk_texts = list(chunk_texts)
        ids = [f"{stem}_{idx}_{stamp}" for idx in range(len(chunk_texts))]
        metadatas = [{"chunk_index": idx, "source": source_file} for idx in range(len(chunk_texts))]

        if ids:
            await self.store.upsert(ids, vectors, chunk_texts, metadatas)
        self._loaded = True

        # sweep everything outside this generation, including leftovers from
        # earlier processes and from loads whose delete failed
        current = set(ids)
        stale = [record_id for record_id in await self.store.list_ids() if record_id not in current]
        if stale:
            await self.store.delete(stale)

        logger.info(
            f"[AnnRetriever] Loaded {len(ids)} chunks into {self.store.name} "
            f"| retired {len(stale)} stale records"
        )

    def _to_scored_chunk(self, hit: StoreHit) -> ScoredChunk:
        chunk = Chunk(
            id=hit.id,
            text=hit.document,
            source_index=int(hit.metadata.get("chunk_index", -1)),
            source_file=str(hit.metadata.get("source", "")),
        )
        return ScoredChunk(chunk, _distance_to_score(self.params.space, hit.distance))

    @traceable(name="retrieve_ann", run_type="retriever")
    async def top_k_with_scores(self, query: str, k: int = DEFAULT_TOP_K) -> list[ScoredChunk]:
        self._require_initialized()
        if k <= 0:
            return []

        query_vec = await self.embedder.embed_query(query)
        hits = await self.store.query(query_vec, k)
        results = [self._to_scored_chunk(hit) for hit in hits]

        logger.info(
            f"[AnnRetriever] Query {truncate_text(query)!r} | returned {len(results)} via HNSW index"
        )
        return results

    async def stats(self) -> dict:
        count = await self.store.count() if self._initialized else 0
        return {
            "kind": self.kind,
            "loaded": self._loaded,
            "initialized": self._initialized,
            "count": count,
            "dimension": self.embedder.dimension,
            "index": self.params.model_dump(),
        }
