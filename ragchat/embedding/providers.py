"""
Embedding Providers
--------------------
Two backends behind one contract: `embed(texts)` returns a float32 matrix of
shape (len(texts), dimension), row i belonging to texts[i].

  OpenAIEmbeddingProvider : remote batch API (text-embedding-3-small).
                            Pending lists longer than `max_batch_size` are
                            split into sub-batches and concatenated in order.
  LocalEmbeddingProvider  : on-device sentence-transformers model.  One
                            inference call per text, run concurrently in
                            worker threads; mean-pooled and L2-normalised.

Whatever a backend hands back (SDK objects, lists, tensors) goes through
`_to_matrix` exactly once, so callers only ever see the one representation.
"""
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

import numpy as np
from loguru import logger
from openai import APITimeoutError, AsyncOpenAI, AuthenticationError, OpenAIError, RateLimitError

from ragchat.config import EmbeddingSettings
from ragchat.exceptions import ProviderError

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536          # text-embedding-3-small native dimensions
BATCH_SIZE = 512           # OpenAI allows up to 2048; 512 keeps requests < 1 MB

LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class EmbeddingProvider(ABC):
    """Opaque text -> fixed-length vector function."""

    name: str
    model: str
    dimension: int
    max_batch_size: Optional[int] = None

    @property
    def provider_id(self) -> str:
        """Cache namespace component: one id per (backend, model)."""
        return f"{self.name}:{self.model}"

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Embed texts in order; one row per input, sub-batched if needed."""
        if not texts:
            return np.empty((0, self.dimension), dtype=np.float32)

        step = self.max_batch_size or len(texts)
        parts: list[np.ndarray] = []
        for i in range(0, len(texts), step):
            batch = list(texts[i: i + step])
            raw = await self._embed_batch(batch)
            parts.append(self._to_matrix(raw, expected_rows=len(batch)))
        return parts[0] if len(parts) == 1 else np.vstack(parts)

    @abstractmethod
    async def _embed_batch(self, texts: list[str]) -> Any:
        """Backend call for one provider-sized batch."""

    def _to_matrix(self, raw: Any, expected_rows: int) -> np.ndarray:
        try:
            matrix = np.asarray(raw, dtype=np.float32)
        except (TypeError, ValueError) as exc:
            raise ProviderError("Provider returned malformed vectors", self.name) from exc

        if matrix.ndim != 2 or matrix.shape[0] != expected_rows:
            raise ProviderError(
                "Provider returned the wrong number of vectors",
                self.name,
                {"expected": expected_rows, "shape": list(matrix.shape)},
            )
        if matrix.shape[1] != self.dimension:
            raise ProviderError(
                "Provider returned vectors of the wrong dimension",
                self.name,
                {"expected": self.dimension, "got": int(matrix.shape[1])},
            )
        if not np.isfinite(matrix).all():
            raise ProviderError("Provider returned non-finite values", self.name)
        return matrix


# --- Remote batch provider ----------------------------------------------------

class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings endpoint; one request per sub-batch."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = MODEL,
        dimension: int = DIMENSIONS,
        batch_size: int = BATCH_SIZE,
        timeout: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.dimension = dimension
        self.max_batch_size = batch_size
        # Retries are the caller's business; the SDK default would retry twice.
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0
        logger.info(f"[OpenAIEmbeddingProvider] Initialised | model={model} | dim={dimension}")

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        # The API rejects empty strings
        safe_texts = [t if t.strip() else " " for t in texts]
        start = time.perf_counter()
        try:
            response = await self._client.embeddings.create(model=self.model, input=safe_texts)
        except AuthenticationError as exc:
            raise ProviderError("Embedding provider rejected the API key", self.name) from exc
        except RateLimitError as exc:
            raise ProviderError("Embedding provider quota or rate limit exceeded", self.name) from exc
        except APITimeoutError as exc:
            raise ProviderError("Embedding provider timed out", self.name) from exc
        except OpenAIError as exc:
            raise ProviderError("Embedding provider request failed", self.name, {"error": str(exc)}) from exc
        elapsed = time.perf_counter() - start

        embeddings = [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
        tokens_used = response.usage.total_tokens if response.usage else 0
        self.total_tokens_used += tokens_used
        self.total_api_calls += 1
        logger.debug(
            f"[OpenAIEmbeddingProvider] API call: {len(texts)} texts, "
            f"{tokens_used} tokens, {elapsed:.2f}s"
        )
        return embeddings


# --- Local on-device provider -------------------------------------------------

class LocalEmbeddingProvider(EmbeddingProvider):
    """sentence-transformers model loaded once at construction."""

    name = "local"

    def __init__(self, model: str = LOCAL_MODEL, device: str = "cpu", encoder: Any = None) -> None:
        if encoder is None:
            from sentence_transformers import SentenceTransformer  # heavy import, load on demand
            encoder = SentenceTransformer(model, device=device)
        self.model = model
        self._encoder = encoder
        self.dimension = int(encoder.get_sentence_embedding_dimension())
        logger.info(f"[LocalEmbeddingProvider] Initialised | model={model} | dim={self.dimension}")

    def _encode_one(self, text: str) -> np.ndarray:
        return self._encoder.encode(
            text,
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )

    async def _embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        try:
            return list(await asyncio.gather(*(asyncio.to_thread(self._encode_one, t) for t in texts)))
        except Exception as exc:
            # adapter boundary: any failure inside the model is a provider fault
            raise ProviderError("Local embedding inference failed", self.name, {"error": str(exc)}) from exc


def create_provider(settings: EmbeddingSettings) -> EmbeddingProvider:
    """Remote provider when an API key is configured, else the on-device model."""
    if settings.openai_api_key:
        logger.info("[Embedding] Using OpenAI for embeddings")
        return OpenAIEmbeddingProvider(
            api_key=settings.openai_api_key,
            model=settings.remote_model,
            dimension=settings.remote_dimensions,
            batch_size=settings.remote_batch_size,
            timeout=settings.timeout_seconds,
        )
    logger.info(f"[Embedding] Using on-device embeddings | model={settings.local_model}")
    return LocalEmbeddingProvider(model=settings.local_model, device=settings.local_device)
