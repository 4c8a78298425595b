"""
External Vector Store
----------------------
Client-side boundary to an approximate-nearest-neighbour store.  The ANN
algorithm, its accuracy and its complexity live in the store; this side only
passes index parameters in and gets ranked ids out.

ChromaVectorStore talks to a Chroma server (HNSW index).  The chromadb SDK
is blocking, so every call runs in a worker thread and is bounded by a
timeout.  Any failure, including the timeout, surfaces as ExternalStoreError.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, NamedTuple, Optional, TypeVar
from urllib.parse import urlparse

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field

from ragchat.exceptions import ExternalStoreError

T = TypeVar("T")


class IndexParams(BaseModel):
    """Named index knobs handed to the store when the collection is opened."""

    collection: str = "knowledge_base"
    space: str = Field(default="cosine", pattern="^(cosine|l2|ip)$")
    construction_ef: int = Field(default=200, gt=0)
    search_ef: int = Field(default=100, gt=0)
    m: int = Field(default=16, gt=0)


class StoreHit(NamedTuple):
    id: str
    document: str
    metadata: dict
    distance: float


class VectorStore(ABC):
    """Remote collection holding vectors; only ids/metadata come back to us."""

    name: str

    @abstractmethod
    async def open(self, params: IndexParams) -> None:
        """Create or open the collection with the given index parameters."""

    @abstractmethod
    async def upsert(
        self,
        ids: list[str],
        vectors: np.ndarray,
        documents: list[str],
        metadatas: list[dict],
    ) -> None:
        """Insert or replace records by id."""

    @abstractmethod
    async def query(self, vector: np.ndarray, k: int) -> list[StoreHit]:
        """k nearest records, nearest first."""

    @abstractmethod
    async def count(self) -> int:
        """Number of records in the collection."""

    @abstractmethod
    async def list_ids(self) -> list[str]:
        """Ids of every record currently in the collection."""

    @abstractmethod
    async def delete(self, ids: list[str]) -> None:
        """Remove records by id."""


class ChromaVectorStore(VectorStore):
    """Chroma HTTP client with HNSW collection metadata."""

    name = "chromadb"

    def __init__(
        self,
        url: str = "http://localhost:8000",
        timeout: float = 30.0,
        client_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client_factory = client_factory or self._http_client
        self._collection: Any = None
        logger.info(f"[ChromaStore] Configured | url={url}")

    def _http_client(self) -> Any:
        import chromadb

        parsed = urlparse(self.url)
        return chromadb.HttpClient(
            host=parsed.hostname or "localhost",
            port=parsed.port or (443 if parsed.scheme == "https" else 8000),
            ssl=parsed.scheme == "https",
        )

    async def _run(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ExternalStoreError(
                f"Vector store {operation} timed out after {self.timeout:.0f}s", operation
            ) from exc
        except ExternalStoreError:
            raise
        except Exception as exc:
            logger.error(f"[ChromaStore] {operation} failed: {exc}")
            raise ExternalStoreError(f"Vector store {operation} failed", operation, {"error": str(exc)}) from exc

    def _require_collection(self, operation: str) -> Any:
        if self._collection is None:
            raise ExternalStoreError("Collection not opened", operation)
        return self._collection

    async def open(self, params: IndexParams) -> None:
        def _open() -> Any:
            client = self._client_factory()
            return client.get_or_create_collection(
                name=params.collection,
                metadata={
                    "hnsw:space": params.space,
                    "hnsw:construction_ef": params.construction_ef,
                    "hnsw:search_ef": params.search_ef,
                    "hnsw:M": params.m,
                },
            )

        self._collection = await self._run("open", _open)
        logger.info(
            f"[ChromaStore] Collection '{params.collection}' ready | HNSW "
            f"space={params.space} construction_ef={params.construction_ef} "
            f"search_ef={params.search_ef} M={params.m}"
        )

    async def upsert(
        self,
        ids: list[str],
        vectors: np.ndarray,
        documents: list[str],
        metadatas: list[dict],
    ) -> None:
        collection = self._require_collection("upsert")
        embeddings = np.asarray(vectors, dtype=np.float32).tolist()
        await self._run(
            "upsert",
            lambda: collection.upsert(
                ids=ids, embeddings=embeddings, documents=documents, metadatas=metadatas
            ),
        )

    async def query(self, vector: np.ndarray, k: int) -> list[StoreHit]:
        collection = self._require_collection("query")
        query_embedding = np.asarray(vector, dtype=np.float32).tolist()
        result = await self._run(
            "query",
            lambda: collection.query(
                query_embeddings=[query_embedding],
                n_results=k,
                include=["documents", "metadatas", "distances"],
            ),
        )
        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0] or []
        metadatas = (result.get("metadatas") or [[]])[0] or []
        distances = (result.get("distances") or [[]])[0] or []

        hits: list[StoreHit] = []
        for i, record_id in enumerate(ids):
            hits.append(
                StoreHit(
                    id=str(record_id),
                    document=documents[i] if i < len(documents) and documents[i] is not None else "",
                    metadata=dict(metadatas[i] or {}) if i < len(metadatas) else {},
                    distance=float(distances[i]) if i < len(distances) else 0.0,
                )
            )
        return hits

    async def count(self) -> int:
        collection = self._require_collection("count")
        return int(await self._run("count", collection.count))

    async def list_ids(self) -> list[str]:
        collection = self._require_collection("list_ids")
        # ids are always returned; include=[] skips embeddings and documents
        result = await self._run("list_ids", lambda: collection.get(include=[]))
        return [str(record_id) for record_id in (result.get("ids") or [])]

    async def delete(self, ids: list[str]) -> None:
        if not ids:
            return
        collection = self._require_collection("delete")
        await self._run("delete", lambda: collection.delete(ids=ids))
