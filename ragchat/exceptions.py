"""
Exception hierarchy for the retrieval core and the chat shell around it.

Only corpus-load, provider, external-store and not-initialised errors cross
the retrieval boundary. CacheError is raised inside the caching layer and
absorbed there; callers never see it.
"""
from __future__ import annotations

from typing import Any


class RagChatError(Exception):
    """Base exception carrying a message plus a context dict for logging."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigError(RagChatError):
    """Raised when the config file or an environment override is invalid."""


class CorpusLoadError(RagChatError):
    """The knowledge file could not be read. The previous corpus stays live."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to read knowledge file: {path}", {"path": path, "reason": reason})
        self.path = path


class ProviderError(RagChatError):
    """Auth, quota, network or timeout failure from an embedding backend."""

    def __init__(self, message: str, provider: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["provider"] = provider
        super().__init__(message, details)
        self.provider = provider


class CacheError(RagChatError):
    """Cache storage unreachable or payload corrupt. Never leaves the cache layer."""


class NotInitializedError(RagChatError):
    """A retriever was queried before a successful load/initialize."""


class ExternalStoreError(RagChatError):
    """Failure reported by (or timeout talking to) the external vector store."""

    def __init__(self, message: str, operation: str, details: dict[str, Any] | None = None) -> None:
        details = details or {}
        details["operation"] = operation
        super().__init__(message, details)
        self.operation = operation


class GenerationError(RagChatError):
    """The hosted text-generation model could not produce an answer."""

    def __init__(self, message: str, status_code: int = 502) -> None:
        super().__init__(message, {"status_code": status_code})
        self.status_code = status_code
