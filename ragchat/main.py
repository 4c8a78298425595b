"""
RAG Chatbot - CLI Entry Point
------------------------------
Exposes Typer commands around the retrieval core.

Usage:
    python -m ragchat.main serve                       # Run the HTTP API
    python -m ragchat.main query "What color is the sky?" --k 3
    python -m ragchat.main stats                       # Load the corpus and show index stats
"""
from __future__ import annotations

import asyncio
import os
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from ragchat.config import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH, AppSettings, load_settings
from ragchat.exceptions import RagChatError
from ragchat.serving.container import cleanup_container, create_container
from ragchat.utils.logger import setup_logger

app = typer.Typer(
    name="ragchat",
    help="Semantic retrieval over a plain-text knowledge base",
    add_completion=False,
)
console = Console()


# --- Helpers ------------------------------------------------------------------

def _settings(config: str, knowledge_file: Optional[str]) -> AppSettings:
    settings = load_settings(config)
    if knowledge_file:
        settings.retrieval.knowledge_file = knowledge_file
    setup_logger(settings.logging.level, settings.logging.file)
    return settings


async def _query_async(settings: AppSettings, text: str, k: int) -> None:
    container = await create_container(settings)
    try:
        results = await container.retriever.top_k_with_scores(text, k)
    finally:
        await cleanup_container(container)

    table = Table(title=f"Top {k} for {text!r}", box=box.SIMPLE_HEAVY)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Chunk", style="magenta")
    table.add_column("Text")
    for rank, (chunk, score) in enumerate(results, start=1):
        preview = chunk.text if len(chunk.text) <= 120 else chunk.text[:117] + "..."
        table.add_row(str(rank), f"{score:.4f}", chunk.id, preview)
    console.print(table)


async def _stats_async(settings: AppSettings) -> None:
    container = await create_container(settings)
    try:
        stats = await container.retriever.stats()
        usage = container.embedder.usage_summary()
    finally:
        await cleanup_container(container)

    table = Table(title="Knowledge base", box=box.SIMPLE_HEAVY, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in {**stats, **usage}.items():
        table.add_row(key, str(value))
    console.print(table)


# --- Commands -----------------------------------------------------------------

@app.command()
def serve(
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (overrides config)"),
) -> None:
    """Run the FastAPI server with uvicorn."""
    import uvicorn

    settings = load_settings(config)
    os.environ[CONFIG_PATH_ENV] = config
    uvicorn.run(
        "app.server:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_level=settings.logging.level.lower(),
    )


@app.command()
def query(
    text: str = typer.Argument(..., help="Free-text query"),
    k: int = typer.Option(3, "--k", "-k", min=1, help="Number of chunks to return"),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
    knowledge_file: Optional[str] = typer.Option(None, "--file", "-f", help="Knowledge file to load"),
) -> None:
    """Load the knowledge file and print the k most similar chunks."""
    settings = _settings(config, knowledge_file)
    try:
        asyncio.run(_query_async(settings, text, k))
    except RagChatError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)


@app.command()
def stats(
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config YAML"),
    knowledge_file: Optional[str] = typer.Option(None, "--file", "-f", help="Knowledge file to load"),
) -> None:
    """Load the knowledge file and show retriever and embedding stats."""
    settings = _settings(config, knowledge_file)
    try:
        asyncio.run(_stats_async(settings))
    except RagChatError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
