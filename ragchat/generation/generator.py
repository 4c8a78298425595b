"""
LLM Client
-----------
Chat-completion call against an OpenAI-compatible endpoint (OpenRouter by
default) through the OpenAI SDK.

The retrieval core has no retry policy of its own; transient failures of
the hosted model (rate limit, connection drop) are retried here, at the
provider-client layer, with tenacity.  A timeout is not retried, so a
timed-out call costs at most `timeout_seconds`.  Whatever still fails, including an
empty completion, becomes a GenerationError with a categorised message.
"""
from __future__ import annotations

import time
from typing import Optional

from langsmith import traceable
from loguru import logger
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    OpenAIError,
    RateLimitError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ragchat.config import GenerationSettings
from ragchat.exceptions import GenerationError


class LLMClient:
    """Single-prompt completion; returns the answer text."""

    def __init__(
        self,
        settings: Optional[GenerationSettings] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.settings = settings or GenerationSettings()
        self.model = self.settings.model
        self._client = client or AsyncOpenAI(
            api_key=self.settings.api_key or "missing",
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            max_retries=0,
            default_headers={
                "HTTP-Referer": self.settings.app_url,
                "X-Title": self.settings.app_title,
            },
        )

    @retry(
        # APITimeoutError subclasses APIConnectionError; a timeout already spent
        # the whole request budget, so it is not retried
        retry=(
            retry_if_exception_type((RateLimitError, APIConnectionError))
            & retry_if_not_exception_type(APITimeoutError)
        ),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _complete(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.settings.max_tokens,
            temperature=self.settings.temperature,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    @traceable(name="generate", run_type="llm")
    async def generate(self, prompt: str) -> str:
        start = time.perf_counter()
        try:
            content = await self._complete(prompt)
        except AuthenticationError as exc:
            raise GenerationError("Invalid LLM API key. Please check your .env file.") from exc
        except RateLimitError as exc:
            raise GenerationError("Rate limit exceeded on the LLM API. Please try again later.") from exc
        except APITimeoutError as exc:
            raise GenerationError("LLM API request timed out.", status_code=504) from exc
        except OpenAIError as exc:
            logger.error(f"[LLMClient] API error after {time.perf_counter() - start:.2f}s: {exc}")
            raise GenerationError("Failed to get a response from the LLM API.") from exc

        if not content.strip():
            logger.error(f"[LLMClient] Empty completion from {self.model}")
            raise GenerationError("The LLM API returned an empty response.")

        logger.info(
            f"[LLMClient] Response generated | model={self.model} | "
            f"latency={(time.perf_counter() - start) * 1000:.0f}ms | chars={len(content)}"
        )
        return content
