"""
Dependency wiring
------------------
Builds every service once, passing collaborators in explicitly.  The HTTP
server and the CLI each hold one Container; nothing else is process-global.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ragchat.caching.content import EmbeddingCache, ResponseCache
from ragchat.caching.stores import KeyValueStore, create_store
from ragchat.config import AppSettings
from ragchat.embedding.embedder import Embedder
from ragchat.embedding.providers import EmbeddingProvider, create_provider
from ragchat.exceptions import CacheError
from ragchat.generation.generator import LLMClient
from ragchat.history import HistoryStore, InMemoryHistoryStore
from ragchat.retrieval.base import Retriever
from ragchat.retrieval.factory import create_retriever
from ragchat.serving.chat_service import ChatService, TextGenerator


@dataclass
class Container:
    settings: AppSettings
    store: KeyValueStore
    embedder: Embedder
    retriever: Retriever
    response_cache: ResponseCache
    history: HistoryStore
    llm: TextGenerator
    chat_service: ChatService


async def create_container(
    settings: AppSettings,
    provider: Optional[EmbeddingProvider] = None,
    store: Optional[KeyValueStore] = None,
    retriever: Optional[Retriever] = None,
    llm: Optional[TextGenerator] = None,
    load_corpus: bool = True,
) -> Container:
    """
    Wire up the service graph and (optionally) load the knowledge file.

    Any collaborator may be passed in pre-built; the rest come from settings.
    An unreachable cache is logged and tolerated; the service runs uncached.
    """
    logger.info("[Container] Initialising application services...")

    store = store or create_store(settings.cache.redis_url)
    try:
        await store.ping()
    except CacheError as exc:
        logger.warning(f"[Container] Cache store unreachable, continuing without cache hits: {exc}")

    if provider is None:
        # model download / load blocks
        provider = await asyncio.to_thread(create_provider, settings.embedding)

    embedder = Embedder(
        provider=provider,
        cache=EmbeddingCache(
            store,
            provider_id=provider.provider_id,
            ttl_seconds=settings.cache.ttl_seconds,
            dimension=provider.dimension,
        ),
        timeout=settings.embedding.timeout_seconds,
    )

    retriever = retriever or create_retriever(settings.retrieval, embedder)
    await retriever.initialize()
    if load_corpus:
        await retriever.load_from_file(settings.retrieval.knowledge_file)
        stats = await retriever.stats()
        logger.info(f"[Container] Knowledge base loaded | {retriever.kind} | chunks={stats['count']}")

    response_cache = ResponseCache(store, ttl_seconds=settings.cache.ttl_seconds)
    history = InMemoryHistoryStore()
    llm = llm or LLMClient(settings.generation)

    chat_service = ChatService(
        retriever=retriever,
        response_cache=response_cache,
        history=history,
        llm=llm,
        top_k=settings.retrieval.top_k,
    )

    logger.info("[Container] All services initialised.")
    return Container(
        settings=settings,
        store=store,
        embedder=embedder,
        retriever=retriever,
        response_cache=response_cache,
        history=history,
        llm=llm,
        chat_service=chat_service,
    )


async def cleanup_container(container: Container) -> None:
    logger.info("[Container] Cleaning up application resources...")
    try:
        await container.store.close()
    except CacheError as exc:
        logger.error(f"[Container] Cache store did not close cleanly: {exc}")
    logger.info("[Container] All resources cleaned up.")
