"""Lightweight language detection (English vs Persian) for answer-language hints."""
from __future__ import annotations

import re
from typing import Literal

from loguru import logger

from ragchat.utils.helpers import truncate_text

Language = Literal["en", "fa", "unknown"]

_PERSIAN_CHARS = re.compile(r"[\u0600-\u06FF]")
_LATIN_CHARS = re.compile(r"[a-zA-Z]")

# A script must make up more than this share of letters to win
_SCRIPT_RATIO = 0.3

_INSTRUCTIONS: dict[str, str] = {
    "fa": "لطفاً پاسخ را به زبان فارسی بدهید (Please respond in Persian/Farsi).",
    "en": "Please respond in English.",
    "unknown": "Please respond in the same language as the question.",
}


def detect_language(text: str) -> Language:
    if not text or not text.strip():
        return "unknown"

    persian = len(_PERSIAN_CHARS.findall(text))
    latin = len(_LATIN_CHARS.findall(text))
    total = persian + latin
    if total == 0:
        return "unknown"

    if persian / total > _SCRIPT_RATIO:
        return "fa"
    if latin / total > _SCRIPT_RATIO:
        return "en"
    return "unknown"


def get_language_instruction(language: Language) -> str:
    return _INSTRUCTIONS.get(language, _INSTRUCTIONS["unknown"])


def add_language_context(prompt: str, query: str) -> str:
    """Append a 'respond in X' note chosen from the query's script."""
    language = detect_language(query)
    logger.debug(f"[Language] Detected {language} for query {truncate_text(query)!r}")
    return f"{prompt}\n\nLanguage Note: {get_language_instruction(language)}"
