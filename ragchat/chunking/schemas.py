"""
Chunk schema - the atomic unit that gets embedded and indexed.

A Chunk is immutable once built and carries its position in the source file
so every retrieval result can be traced back to where it came from.
"""
from __future__ import annotations

from typing import NamedTuple

from pydantic import BaseModel, ConfigDict


class Chunk(BaseModel):
    """A bounded-size passage of the knowledge file."""

    model_config = ConfigDict(frozen=True)

    id: str                 # Unique within one corpus load
    text: str               # The actual text to embed
    source_index: int       # Position of the window within the source file
    source_file: str        # Path the corpus was loaded from


class ScoredChunk(NamedTuple):
    chunk: Chunk
    score: float
