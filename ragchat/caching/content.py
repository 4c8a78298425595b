"""
Content-Addressed Caches
-------------------------
Text is hashed (SHA-256 over its exact bytes) and stored under
`<namespace>:<digest>` with a TTL measured from write time.  Identical text
therefore always maps to the same key, across unrelated calls.

Two users of the same discipline:
  - EmbeddingCache : text -> embedding vector (JSON float array)
  - ResponseCache  : question -> generated answer

Cache faults never escape: a failing or corrupt `get` is logged and reported
as a miss; a failing `set` is logged and skipped.  The pipeline above still
completes, just slower.
"""
from __future__ import annotations

from typing import Optional

import numpy as np
from loguru import logger

from ragchat.caching.stores import KeyValueStore
from ragchat.exceptions import CacheError
from ragchat.utils.helpers import dumps_json, loads_json, sha256_hex

DEFAULT_TTL_SECONDS = 3600


class ContentAddressedCache:
    """Raw string values keyed by hash(text) inside one namespace."""

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.store = store
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def key_for(self, text: str) -> str:
        return f"{self.namespace}:{sha256_hex(text)}"

    async def get_raw(self, text: str) -> Optional[str]:
        key = self.key_for(text)
        try:
            value = await self.store.get(key)
        except CacheError as exc:
            logger.error(f"[Cache] Failed to read {key}: {exc}")
            return None
        if value is None:
            logger.debug(f"[Cache] Miss {key}")
        else:
            logger.debug(f"[Cache] Hit {key}")
        return value

    async def set_raw(self, text: str, value: str) -> None:
        key = self.key_for(text)
        try:
            await self.store.setex(key, self.ttl_seconds, value)
        except CacheError as exc:
            logger.error(f"[Cache] Failed to write {key}: {exc}")
            return
        logger.debug(f"[Cache] Stored {key} | ttl={self.ttl_seconds}s")


class EmbeddingCache(ContentAddressedCache):
    """
    Vectors keyed by text, namespaced per provider.

    The provider id is part of the namespace so two providers with different
    dimensions sharing one store can never serve each other's vectors.
    """

    def __init__(
        self,
        store: KeyValueStore,
        provider_id: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        dimension: Optional[int] = None,
    ) -> None:
        super().__init__(store, namespace=f"embed:{provider_id}", ttl_seconds=ttl_seconds)
        self.provider_id = provider_id
        self.dimension = dimension

    async def get(self, text: str) -> Optional[np.ndarray]:
        raw = await self.get_raw(text)
        if raw is None:
            return None
        try:
            return self._decode(raw)
        except CacheError as exc:
            logger.error(f"[EmbeddingCache] Discarding corrupt entry {self.key_for(text)}: {exc}")
            return None

    async def set(self, text: str, vector: np.ndarray) -> None:
        await self.set_raw(text, dumps_json(np.asarray(vector, dtype=np.float32)))

    def _decode(self, raw: str) -> np.ndarray:
        try:
            data = loads_json(raw)
        except ValueError as exc:
            raise CacheError("Cached payload is not valid JSON") from exc
        if not isinstance(data, list) or not data:
            raise CacheError("Cached payload is not a non-empty array")
        if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in data):
            raise CacheError("Cached payload contains non-numeric values")
        if self.dimension is not None and len(data) != self.dimension:
            raise CacheError(
                "Cached vector has wrong dimension",
                {"expected": self.dimension, "got": len(data)},
            )
        return np.asarray(data, dtype=np.float32)


class ResponseCache(ContentAddressedCache):
    """Generated answers keyed by question text."""

    def __init__(self, store: KeyValueStore, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        super().__init__(store, namespace="chat", ttl_seconds=ttl_seconds)

    async def get(self, question: str) -> Optional[str]:
        return await self.get_raw(question)

    async def set(self, question: str, answer: str) -> None:
        await self.set_raw(question, answer)
