"""Construction-time selection of the retriever implementation."""
from __future__ import annotations

from loguru import logger

from ragchat.config import RetrievalSettings
from ragchat.embedding.embedder import Embedder
from ragchat.retrieval.ann_retriever import AnnRetriever
from ragchat.retrieval.base import Retriever
from ragchat.retrieval.memory_retriever import BruteForceRetriever
from ragchat.retrieval.vector_store import ChromaVectorStore, IndexParams


def create_retriever(settings: RetrievalSettings, embedder: Embedder) -> Retriever:
    if settings.use_chromadb:
        chroma = settings.chroma
        logger.info("[Retrieval] Using ChromaDB with HNSW indexing")
        return AnnRetriever(
            embedder=embedder,
            store=ChromaVectorStore(url=chroma.url, timeout=chroma.timeout_seconds),
            params=IndexParams(
                collection=chroma.collection,
                space=chroma.space,
                construction_ef=chroma.construction_ef,
                search_ef=chroma.search_ef,
                m=chroma.m,
            ),
            chunk_words=settings.chunk_words,
        )
    logger.info("[Retrieval] Using in-memory retrieval (exact O(n) search)")
    return BruteForceRetriever(embedder=embedder, chunk_words=settings.chunk_words)
