"""
Cached Embedder
----------------
Wraps an EmbeddingProvider with the batch dedup + cache protocol:

  1. Look up every distinct input text in the EmbeddingCache.  Hits go
     straight to their output rows.
  2. Misses are collected in first-occurrence order.  Duplicate texts within
     one call are coalesced: the provider sees each distinct text once and
     the result is fanned out to every row holding that text.
  3. One provider call for all pending texts (the provider splits into its
     own sub-batches), bounded by `timeout`.
  4. Each new vector is written to the cache once and placed in its rows.

Every row of the result is a real vector; anything short of that is a
ProviderError, never a partial or zero-filled matrix.
"""
from __future__ import annotations

import asyncio
from typing import Sequence

import numpy as np
from langsmith import traceable
from loguru import logger

from ragchat.caching.content import EmbeddingCache
from ragchat.embedding.providers import EmbeddingProvider
from ragchat.exceptions import ProviderError

DEFAULT_TIMEOUT_SECONDS = 30.0


class Embedder:
    """
    Provider + cache pair with a fixed output dimension.

    The cache must be namespaced for this provider; mixing vectors from two
    providers in one namespace would silently corrupt retrieval.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: EmbeddingCache,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if cache.provider_id != provider.provider_id:
            raise ValueError(
                f"Cache namespace {cache.provider_id!r} does not match provider {provider.provider_id!r}"
            )
        self.provider = provider
        self.cache = cache
        self.timeout = timeout
        self.dimension: int = provider.dimension
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.provider_calls: int = 0

    @traceable(name="embed_texts", run_type="embedding")
    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        """
        Embed texts, consulting and populating the cache.

        Returns:
            float32 array of shape (len(texts), dimension), row i for texts[i].

        Raises:
            ProviderError: provider failure, timeout, or a result that does not
                           cover every pending text.
        """
        output = np.empty((len(texts), self.dimension), dtype=np.float32)
        if not texts:
            return output

        rows_by_text: dict[str, list[int]] = {}
        for idx, text in enumerate(texts):
            rows_by_text.setdefault(text, []).append(idx)
        distinct = list(rows_by_text)

        cached = await asyncio.gather(*(self.cache.get(text) for text in distinct))

        pending: list[str] = []
        for text, vector in zip(distinct, cached):
            if vector is None:
                pending.append(text)
            else:
                output[rows_by_text[text]] = vector

        hits = len(distinct) - len(pending)
        self.cache_hits += hits
        self.cache_misses += len(pending)

        if pending:
            logger.info(
                f"[Embedder] {self.provider.name}: embedding {len(pending)} uncached texts "
                f"({hits} cache hits, {len(texts) - len(distinct)} duplicates coalesced)"
            )
            vectors = await self._call_provider(pending)
            await asyncio.gather(*(self.cache.set(text, vec) for text, vec in zip(pending, vectors)))
            for text, vec in zip(pending, vectors):
                output[rows_by_text[text]] = vec

        return output

    async def embed_query(self, text: str) -> np.ndarray:
        """Single-element batch through the same cache path. Returns shape (dimension,)."""
        return (await self.embed([text]))[0]

    async def _call_provider(self, pending: list[str]) -> np.ndarray:
        self.provider_calls += 1
        try:
            vectors = await asyncio.wait_for(self.provider.embed(pending), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Embedding provider timed out after {self.timeout:.0f}s",
                self.provider.name,
                {"pending": len(pending)},
            ) from exc

        try:
            vectors = np.asarray(vectors, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise ProviderError("Embedding provider returned malformed vectors", self.provider.name) from exc
        if vectors.shape != (len(pending), self.dimension):
            raise ProviderError(
                "Embedding provider did not fill every requested position",
                self.provider.name,
                {"expected": [len(pending), self.dimension], "got": list(vectors.shape)},
            )
        return vectors

    def usage_summary(self) -> dict:
        return {
            "provider": self.provider.provider_id,
            "dimension": self.dimension,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "provider_calls": self.provider_calls,
        }
