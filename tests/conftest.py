"""
Shared test fixtures.

Provides: deterministic call-counting embedding provider, in-process cache
store driven by a fake clock, embedder factory, corpus files on disk.
No network services are touched anywhere in the suite.
"""

from pathlib import Path
from typing import Callable, Optional

import pytest

from ragchat.caching.content import EmbeddingCache
from ragchat.caching.stores import KeyValueStore, MemoryStore
from ragchat.embedding.embedder import Embedder
from ragchat.embedding.providers import EmbeddingProvider
from tests.stubs import FakeClock, KeywordProvider


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryStore:
    """In-process store driven by the fake clock."""
    return MemoryStore(clock=clock)


@pytest.fixture
def provider() -> KeywordProvider:
    return KeywordProvider()


@pytest.fixture
def make_embedder(memory_store: MemoryStore) -> Callable[..., Embedder]:
    """Factory: Embedder over the given provider, caching into memory_store by default."""

    def _make(
        provider: EmbeddingProvider,
        store: Optional[KeyValueStore] = None,
        timeout: float = 5.0,
    ) -> Embedder:
        cache = EmbeddingCache(
            store if store is not None else memory_store,
            provider_id=provider.provider_id,
            ttl_seconds=3600,
            dimension=provider.dimension,
        )
        return Embedder(provider=provider, cache=cache, timeout=timeout)

    return _make


@pytest.fixture
def embedder(provider: KeywordProvider, make_embedder) -> Embedder:
    return make_embedder(provider)


@pytest.fixture
def write_corpus(tmp_path: Path) -> Callable[..., Path]:
    """Write a UTF-8 knowledge file under tmp_path and return its path."""

    def _write(content: str, name: str = "knowledge.txt") -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
