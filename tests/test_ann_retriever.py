"""
Tests for the delegated ANN retriever and the Chroma store adapter.

The retriever runs against an in-memory VectorStore; the Chroma adapter runs
against a MagicMock collection injected through client_factory.
"""

import threading
from unittest.mock import MagicMock

import numpy as np
import pytest

from ragchat.exceptions import ExternalStoreError, NotInitializedError
from ragchat.retrieval.ann_retriever import AnnRetriever, _distance_to_score
from ragchat.retrieval.vector_store import ChromaVectorStore, IndexParams, StoreHit
from tests.stubs import InMemoryVectorStore

SKY_CORPUS = ["The sky is blue.", "Cats are mammals.", "Water boils at 100C."]


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def retriever(embedder, store) -> AnnRetriever:
    return AnnRetriever(embedder, store, params=IndexParams(collection="kb", construction_ef=64, m=8))


class TestInitialization:
    @pytest.mark.asyncio
    async def test_load_and_query_require_initialize(self, retriever: AnnRetriever, write_corpus) -> None:
        with pytest.raises(NotInitializedError):
            await retriever.load_from_file(write_corpus("sky"))
        with pytest.raises(NotInitializedError):
            await retriever.load_chunks(SKY_CORPUS, source_file="kb.txt")
        with pytest.raises(NotInitializedError):
            await retriever.top_k_similar("sky")

    @pytest.mark.asyncio
    async def test_initialize_passes_index_params_to_store(
        self, retriever: AnnRetriever, store: InMemoryVectorStore
    ) -> None:
        await retriever.initialize()

        assert retriever.is_initialized
        assert store.params.collection == "kb"
        assert store.params.construction_ef == 64
        assert store.params.m == 8

    def test_rejects_unknown_distance_space(self) -> None:
        with pytest.raises(ValueError):
            IndexParams(space="manhattan")


class TestLoad:
    @pytest.mark.asyncio
    async def test_ids_carry_source_stem_index_and_stamp(
        self, retriever: AnnRetriever, store: InMemoryVectorStore
    ) -> None:
        await retriever.initialize()

        await retriever.load_chunks(SKY_CORPUS, source_file="/data/knowledge.txt")

        ids = store.upserts[0]
        stamps = {record_id.rsplit("_", 1)[1] for record_id in ids}
        assert [record_id.rsplit("_", 1)[0] for record_id in ids] == [
            "knowledge_0",
            "knowledge_1",
            "knowledge_2",
        ]
        assert len(stamps) == 1
        _, _, metadata = store.records[ids[1]]
        assert metadata == {"chunk_index": 1, "source": "/data/knowledge.txt"}

    @pytest.mark.asyncio
    async def test_reload_uses_fresh_ids_and_retires_old_ones(
        self, retriever: AnnRetriever, store: InMemoryVectorStore
    ) -> None:
        await retriever.initialize()

        await retriever.load_chunks(SKY_CORPUS, source_file="kb.txt")
        await retriever.load_chunks(SKY_CORPUS[:1], source_file="kb.txt")

        first, second = store.upserts
        assert set(first).isdisjoint(second)
        assert sorted(store.deleted) == sorted(first)
        assert list(store.records) == second

    @pytest.mark.asyncio
    async def test_failed_cleanup_is_swept_by_the_next_load(
        self, retriever: AnnRetriever, store: InMemoryVectorStore
    ) -> None:
        await retriever.initialize()
        await retriever.load_chunks(["The sky is blue."], source_file="a.txt")

        store.fail_deletes = 1
        with pytest.raises(ExternalStoreError):
            await retriever.load_chunks(["Cats are mammals."], source_file="b.txt")
        await retriever.load_chunks(["Water boils at 100C."], source_file="c.txt")

        top = await retriever.top_k_similar("What color is the sky?", k=5)
        assert [c.text for c in top] == ["Water boils at 100C."]
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_records_from_an_earlier_process_are_replaced(self, embedder) -> None:
        collection: dict = {}
        first = AnnRetriever(embedder, InMemoryVectorStore(collection))
        await first.initialize()
        await first.load_chunks(["The sky is blue.", "Cats are mammals."], source_file="old.txt")

        second = AnnRetriever(embedder, InMemoryVectorStore(collection))
        await second.initialize()
        await second.load_chunks(["Water boils at 100C."], source_file="new.txt")

        top = await second.top_k_similar("What color is the sky?", k=5)
        assert [c.text for c in top] == ["Water boils at 100C."]
        assert all(record_id.startswith("new_") for record_id in collection)

    @pytest.mark.asyncio
    async def test_empty_corpus_skips_upsert(self, retriever: AnnRetriever, store: InMemoryVectorStore) -> None:
        await retriever.initialize()

        await retriever.load_chunks([], source_file="empty.txt")

        assert store.upserts == []
        assert await retriever.top_k_similar("sky") == []
        assert (await retriever.stats())["loaded"] is True


class TestQuery:
    @pytest.mark.asyncio
    async def test_sky_question_returns_sky_chunk(self, retriever: AnnRetriever) -> None:
        await retriever.initialize()
        await retriever.load_chunks(SKY_CORPUS, source_file="kb.txt")

        scored = await retriever.top_k_with_scores("What color is the sky?", k=1)

        assert len(scored) == 1
        chunk, score = scored[0]
        assert chunk.text == "The sky is blue."
        assert chunk.source_index == 0
        assert chunk.source_file == "kb.txt"
        assert score == pytest.approx(2 / 3)

    @pytest.mark.asyncio
    async def test_non_positive_k_skips_store(self, retriever: AnnRetriever, store: InMemoryVectorStore) -> None:
        await retriever.initialize()
        store.query = MagicMock()

        assert await retriever.top_k_similar("sky", k=0) == []
        store.query.assert_not_called()

    def test_distance_to_score(self) -> None:
        assert _distance_to_score("cosine", 0.25) == pytest.approx(0.75)
        assert _distance_to_score("ip", 1.0) == pytest.approx(0.0)
        assert _distance_to_score("l2", 2.5) == pytest.approx(-2.5)

    @pytest.mark.asyncio
    async def test_stats_include_count_and_index(self, retriever: AnnRetriever) -> None:
        await retriever.initialize()
        await retriever.load_chunks(SKY_CORPUS, source_file="kb.txt")

        stats = await retriever.stats()

        assert stats["kind"] == "chromadb"
        assert stats["count"] == 3
        assert stats["index"]["collection"] == "kb"


class TestChromaVectorStore:
    def _store(self, collection: MagicMock, timeout: float = 5.0) -> ChromaVectorStore:
        client = MagicMock()
        client.get_or_create_collection.return_value = collection
        return ChromaVectorStore(url="http://chroma:8000", timeout=timeout, client_factory=lambda: client)

    @pytest.mark.asyncio
    async def test_open_sends_hnsw_metadata(self) -> None:
        client = MagicMock()
        store = ChromaVectorStore(client_factory=lambda: client)

        await store.open(IndexParams(collection="kb", space="cosine", construction_ef=200, search_ef=50, m=16))

        client.get_or_create_collection.assert_called_once_with(
            name="kb",
            metadata={
                "hnsw:space": "cosine",
                "hnsw:construction_ef": 200,
                "hnsw:search_ef": 50,
                "hnsw:M": 16,
            },
        )

    @pytest.mark.asyncio
    async def test_query_translates_nested_result(self) -> None:
        collection = MagicMock()
        collection.query.return_value = {
            "ids": [["kb_0_1", "kb_2_1"]],
            "documents": [["The sky is blue.", None]],
            "metadatas": [[{"chunk_index": 0, "source": "kb.txt"}, None]],
            "distances": [[0.1, 0.4]],
        }
        store = self._store(collection)
        await store.open(IndexParams())

        hits = await store.query(np.array([1.0, 0.0]), k=2)

        assert hits == [
            StoreHit("kb_0_1", "The sky is blue.", {"chunk_index": 0, "source": "kb.txt"}, 0.1),
            StoreHit("kb_2_1", "", {}, 0.4),
        ]
        kwargs = collection.query.call_args.kwargs
        assert kwargs["n_results"] == 2
        assert kwargs["query_embeddings"] == [[1.0, 0.0]]

    @pytest.mark.asyncio
    async def test_upsert_sends_plain_lists(self) -> None:
        collection = MagicMock()
        store = self._store(collection)
        await store.open(IndexParams())

        await store.upsert(["a"], np.array([[0.5, 0.25]], dtype=np.float32), ["doc"], [{"chunk_index": 0}])

        collection.upsert.assert_called_once_with(
            ids=["a"], embeddings=[[0.5, 0.25]], documents=["doc"], metadatas=[{"chunk_index": 0}]
        )

    @pytest.mark.asyncio
    async def test_sdk_failure_becomes_external_store_error(self) -> None:
        collection = MagicMock()
        collection.count.side_effect = ConnectionError("refused")
        store = self._store(collection)
        await store.open(IndexParams())

        with pytest.raises(ExternalStoreError) as exc_info:
            await store.count()

        assert exc_info.value.operation == "count"

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self) -> None:
        release = threading.Event()
        collection = MagicMock()
        collection.count.side_effect = lambda: release.wait(5.0)
        store = self._store(collection, timeout=0.05)
        await store.open(IndexParams())

        try:
            with pytest.raises(ExternalStoreError, match="timed out"):
                await store.count()
        finally:
            release.set()

    @pytest.mark.asyncio
    async def test_calls_before_open_fail(self) -> None:
        store = ChromaVectorStore(client_factory=MagicMock)

        with pytest.raises(ExternalStoreError):
            await store.query(np.array([1.0]), k=1)

    @pytest.mark.asyncio
    async def test_list_ids_fetches_ids_only(self) -> None:
        collection = MagicMock()
        collection.get.return_value = {"ids": ["kb_0_1", "kb_1_1"], "embeddings": None}
        store = self._store(collection)
        await store.open(IndexParams())

        assert await store.list_ids() == ["kb_0_1", "kb_1_1"]
        collection.get.assert_called_once_with(include=[])

    @pytest.mark.asyncio
    async def test_delete_with_no_ids_is_a_noop(self) -> None:
        collection = MagicMock()
        store = self._store(collection)
        await store.open(IndexParams())

        await store.delete([])

        collection.delete.assert_not_called()
