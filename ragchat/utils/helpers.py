"""Shared utility functions used across the service."""
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any

import orjson


# --- Text Utilities -----------------------------------------------------------

def sha256_hex(text: str) -> str:
    """Hex SHA-256 of the exact UTF-8 bytes of text (no normalisation)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def truncate_text(text: str, max_chars: int = 50) -> str:
    """Truncate text for log lines."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


# --- JSON ---------------------------------------------------------------------

def dumps_json(data: Any) -> str:
    """Serialise to a JSON string using orjson (handles numpy arrays natively)."""
    return orjson.dumps(data, option=orjson.OPT_SERIALIZE_NUMPY).decode("utf-8")


def loads_json(raw: str | bytes) -> Any:
    return orjson.loads(raw)


# --- File I/O -----------------------------------------------------------------

def read_text_file(path: str | Path) -> str:
    """Read a UTF-8 text file. Raises OSError / UnicodeDecodeError unchanged."""
    return Path(path).resolve().read_text(encoding="utf-8")
