"""
Chat Service
-------------
Orchestrates one chat turn:

    user message
        |
        v
    ResponseCache (hash of the question) --hit--> record history, return
        |
       miss
        v
    Retriever.top_k_with_scores (k=3)
        |
        v
    history (last 10 exchanges) + build_prompt
        |
        v
    LLMClient.generate
        |
        v
    ResponseCache.set + history append (concurrently)

Failures in retrieval or generation propagate as typed errors, so a
provider outage turns into an error response rather than a wrong answer.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from loguru import logger

from ragchat.caching.content import ResponseCache
from ragchat.exceptions import GenerationError, RagChatError
from ragchat.generation.prompts import build_prompt
from ragchat.history import ChatRecord, HistoryStore
from ragchat.retrieval.base import Retriever
from ragchat.utils.helpers import truncate_text

PromptBuilder = Callable[[Sequence[str], str, Optional[Sequence[str]]], str]


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> Awaitable[str]:
        ...


@dataclass
class ChatResult:
    """Output of a single chat turn. Timing fields are in milliseconds."""

    response: str
    cached: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sources: list[dict] = field(default_factory=list)
    retrieval_ms: float = 0.0
    generation_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "cached": self.cached,
            "timestamp": self.timestamp.isoformat(),
            "sources": self.sources,
            "latency_ms": {
                "retrieval": round(self.retrieval_ms, 1),
                "generation": round(self.generation_ms, 1),
            },
        }


class ChatService:
    def __init__(
        self,
        retriever: Retriever,
        response_cache: ResponseCache,
        history: HistoryStore,
        llm: TextGenerator,
        prompt_builder: PromptBuilder = build_prompt,
        top_k: int = 3,
        history_window: int = 10,
    ) -> None:
        self.retriever = retriever
        self.response_cache = response_cache
        self.history = history
        self.llm = llm
        self.prompt_builder = prompt_builder
        self.top_k = top_k
        self.history_window = history_window

    async def process_chat(self, message: str, user_id: str, session_id: str) -> ChatResult:
        cached = await self.response_cache.get(message)
        # an empty entry is never a valid answer
        if cached:
            logger.info(f"[ChatService] Response cache hit | user={user_id}")
            await self.history.append(
                ChatRecord(user_id=user_id, session_id=session_id, message=message, response=cached)
            )
            return ChatResult(response=cached, cached=True)

        try:
            t0 = time.perf_counter()
            scored = await self.retriever.top_k_with_scores(message, self.top_k)
            retrieval_ms = (time.perf_counter() - t0) * 1000

            history_pairs = await self.history.recent_pairs(user_id, self.history_window)
            prompt = self.prompt_builder([s.chunk.text for s in scored], message, history_pairs)

            t1 = time.perf_counter()
            response = await self.llm.generate(prompt)
            generation_ms = (time.perf_counter() - t1) * 1000
            if not response or not response.strip():
                raise GenerationError("The language model returned an empty response.")
        except RagChatError as exc:
            logger.error(
                f"[ChatService] Failed to process chat | user={user_id} session={session_id} "
                f"message={truncate_text(message, 100)!r} | {exc}"
            )
            raise

        await asyncio.gather(
            self.response_cache.set(message, response),
            self.history.append(
                ChatRecord(user_id=user_id, session_id=session_id, message=message, response=response)
            ),
        )

        logger.info(
            f"[ChatService] Complete | retrieve={retrieval_ms:.0f}ms "
            f"generate={generation_ms:.0f}ms | chunks={len(scored)}"
        )
        return ChatResult(
            response=response,
            cached=False,
            sources=[
                {
                    "id": s.chunk.id,
                    "source_file": s.chunk.source_file,
                    "source_index": s.chunk.source_index,
                    "score": round(s.score, 4),
                }
                for s in scored
            ],
            retrieval_ms=retrieval_ms,
            generation_ms=generation_ms,
        )
