"""
Prompt templates and assembly for the chat generator.

Keeping templates in a separate module makes them easy to iterate on
without touching generation logic.
"""
from __future__ import annotations

from typing import Optional, Sequence

from loguru import logger

from ragchat.generation.language import add_language_context

MAX_CONTEXT_CHARS = 2000
MAX_HISTORY_CHARS = 1000
HISTORY_TAIL_PAIRS = 5

# ---------------------------------------------------------------------------
# Main prompt
# ---------------------------------------------------------------------------

PROMPT_TEMPLATE = """\
You are a helpful assistant. Answer based on the provided context and conversation history.

{history}Context:
{context}

Question: {question}

Instructions:
- If the answer is in the context, provide a clear and concise response
- If the answer is NOT in the context, say "I don't have that information in my knowledge base"
- Use the conversation history to maintain context
- Be helpful and friendly

Answer:"""

CONTEXT_SEPARATOR = "\n---\n"
TRUNCATION_MARKER = "... [truncated]"


def _format_history(history: Sequence[str]) -> str:
    if not history:
        return ""
    joined = "\n".join(history)
    if len(joined) > MAX_HISTORY_CHARS:
        joined = "\n".join(history[-HISTORY_TAIL_PAIRS:])
    return f"Previous conversation:\n{joined}\n\n"


def build_prompt(
    context_chunks: Sequence[str],
    question: str,
    history: Optional[Sequence[str]] = None,
) -> str:
    """
    Assemble the LLM prompt.

    Args:
        context_chunks: Retrieved passages, best first.
        question: The user's message.
        history: "Q: ...\\nA: ..." pairs, oldest first.
    """
    context = CONTEXT_SEPARATOR.join(context_chunks)
    if len(context) > MAX_CONTEXT_CHARS:
        logger.warning(
            f"[Prompt] Context truncated to fit LLM token limit "
            f"({len(context)} -> {MAX_CONTEXT_CHARS} chars)"
        )
        context = context[:MAX_CONTEXT_CHARS] + TRUNCATION_MARKER

    prompt = PROMPT_TEMPLATE.format(
        history=_format_history(list(history or [])),
        context=context,
        question=question,
    )
    return add_language_context(prompt, question)
