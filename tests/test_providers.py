"""Tests for embedding provider backends and their output normalisation."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import numpy as np
import pytest
from openai import RateLimitError

from ragchat.config import EmbeddingSettings
from ragchat.embedding.providers import (
    LocalEmbeddingProvider,
    OpenAIEmbeddingProvider,
    create_provider,
)
from ragchat.exceptions import ProviderError
from tests.stubs import KeywordProvider


def _embedding_response(vectors, total_tokens=7):
    # Deliberately out of index order; the provider must sort.
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    return SimpleNamespace(data=list(reversed(data)), usage=SimpleNamespace(total_tokens=total_tokens))


def _openai_client(side_effect=None, return_value=None):
    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=side_effect, return_value=return_value)
    return client


class TestToMatrix:
    def test_rejects_wrong_row_count(self) -> None:
        provider = KeywordProvider()

        with pytest.raises(ProviderError):
            provider._to_matrix([[1.0] * provider.dimension], expected_rows=2)

    def test_rejects_wrong_dimension(self) -> None:
        provider = KeywordProvider()

        with pytest.raises(ProviderError, match="dimension"):
            provider._to_matrix([[1.0, 2.0]], expected_rows=1)

    def test_rejects_ragged_and_non_finite(self) -> None:
        provider = KeywordProvider()

        with pytest.raises(ProviderError):
            provider._to_matrix([[1.0], [1.0, 2.0]], expected_rows=2)
        with pytest.raises(ProviderError):
            provider._to_matrix([[float("nan")] * provider.dimension], expected_rows=1)

    def test_returns_float32_matrix(self) -> None:
        provider = KeywordProvider()

        matrix = provider._to_matrix([[1, 2, 3, 4, 5, 6]], expected_rows=1)

        assert matrix.dtype == np.float32
        assert matrix.shape == (1, 6)


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_returns_vectors_in_input_order(self) -> None:
        client = _openai_client(return_value=_embedding_response([[1.0, 0.0], [0.0, 1.0]]))
        provider = OpenAIEmbeddingProvider(api_key="sk-test", dimension=2, client=client)

        result = await provider.embed(["first", "second"])

        np.testing.assert_array_equal(result, [[1.0, 0.0], [0.0, 1.0]])
        assert provider.total_api_calls == 1
        assert provider.total_tokens_used == 7
        assert provider.provider_id == "openai:text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_blank_text_is_sent_as_single_space(self) -> None:
        client = _openai_client(return_value=_embedding_response([[1.0, 0.0]]))
        provider = OpenAIEmbeddingProvider(api_key="sk-test", dimension=2, client=client)

        await provider.embed([""])

        assert client.embeddings.create.await_args.kwargs["input"] == [" "]

    @pytest.mark.asyncio
    async def test_splits_into_sub_batches(self) -> None:
        client = _openai_client(
            side_effect=[
                _embedding_response([[1.0, 0.0], [0.0, 1.0]]),
                _embedding_response([[1.0, 1.0]]),
            ]
        )
        provider = OpenAIEmbeddingProvider(api_key="sk-test", dimension=2, batch_size=2, client=client)

        result = await provider.embed(["a", "b", "c"])

        assert result.shape == (3, 2)
        assert client.embeddings.create.await_count == 2
        np.testing.assert_array_equal(result[2], [1.0, 1.0])

    @pytest.mark.asyncio
    async def test_rate_limit_becomes_provider_error(self) -> None:
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        error = RateLimitError("quota", response=httpx.Response(429, request=request), body=None)
        provider = OpenAIEmbeddingProvider(api_key="sk-test", dimension=2, client=_openai_client(side_effect=error))

        with pytest.raises(ProviderError) as exc_info:
            await provider.embed(["a"])

        assert exc_info.value.provider == "openai"

    @pytest.mark.asyncio
    async def test_wrong_dimension_from_api_is_provider_error(self) -> None:
        client = _openai_client(return_value=_embedding_response([[1.0, 0.0, 0.0]]))
        provider = OpenAIEmbeddingProvider(api_key="sk-test", dimension=2, client=client)

        with pytest.raises(ProviderError):
            await provider.embed(["a"])


class FakeEncoder:
    def __init__(self, dimension: int = 3) -> None:
        self.dimension = dimension
        self.encoded: list[str] = []

    def get_sentence_embedding_dimension(self) -> int:
        return self.dimension

    def encode(self, text, **kwargs):
        self.encoded.append(text)
        return np.full(self.dimension, float(len(text)), dtype=np.float32)


class TestLocalEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_one_inference_per_text_in_order(self) -> None:
        encoder = FakeEncoder()
        provider = LocalEmbeddingProvider(model="mini", encoder=encoder)

        result = await provider.embed(["a", "bbb"])

        assert provider.dimension == 3
        assert sorted(encoder.encoded) == ["a", "bbb"]
        np.testing.assert_array_equal(result[:, 0], [1.0, 3.0])
        assert provider.provider_id == "local:mini"

    @pytest.mark.asyncio
    async def test_inference_failure_is_provider_error(self) -> None:
        failures = [
            RuntimeError("CUDA out of memory"),
            OSError("model weights missing"),
            TypeError("unsupported input"),
        ]
        for failure in failures:
            encoder = FakeEncoder()
            encoder.encode = MagicMock(side_effect=failure)
            provider = LocalEmbeddingProvider(model="mini", encoder=encoder)

            with pytest.raises(ProviderError) as exc_info:
                await provider.embed(["a"])

            assert exc_info.value.provider == "local"
            assert exc_info.value.__cause__ is failure


class TestCreateProvider:
    def test_api_key_selects_remote_provider(self) -> None:
        settings = EmbeddingSettings(openai_api_key="sk-test", remote_dimensions=256)

        provider = create_provider(settings)

        assert isinstance(provider, OpenAIEmbeddingProvider)
        assert provider.dimension == 256
