"""
Conversation history
---------------------
Append-only log of (message, response) exchanges, queried per user, newest
first, with offset/limit pagination.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ChatRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    session_id: str
    message: str
    response: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def as_pair(self) -> str:
        return f"Q: {self.message}\nA: {self.response}"


class HistoryStore(ABC):
    @abstractmethod
    async def append(self, record: ChatRecord) -> None:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str, offset: int = 0, limit: int = 10) -> list[ChatRecord]:
        """Newest first."""

    @abstractmethod
    async def count_for_user(self, user_id: str) -> int:
        ...

    async def recent_pairs(self, user_id: str, n: int = 10) -> list[str]:
        """The user's last n exchanges as Q/A strings, oldest first (prompt order)."""
        records = await self.list_for_user(user_id, offset=0, limit=n)
        return [record.as_pair() for record in reversed(records)]


class InMemoryHistoryStore(HistoryStore):
    """Per-user lists in insertion order; records are never edited or removed."""

    def __init__(self) -> None:
        self._records: dict[str, list[ChatRecord]] = {}

    async def append(self, record: ChatRecord) -> None:
        self._records.setdefault(record.user_id, []).append(record)

    async def list_for_user(self, user_id: str, offset: int = 0, limit: int = 10) -> list[ChatRecord]:
        if offset < 0 or limit < 0:
            raise ValueError("offset and limit must be non-negative")
        newest_first = list(reversed(self._records.get(user_id, [])))
        return newest_first[offset: offset + limit]

    async def count_for_user(self, user_id: str) -> int:
        return len(self._records.get(user_id, []))
