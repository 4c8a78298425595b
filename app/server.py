"""
RAG Chatbot - Web API Server
-----------------------------
FastAPI server wrapping the ChatService and the retriever behind it.

Endpoints:
  GET  /api/health              -> retriever kind, chunk count, embedding provider
  POST /api/chat                -> answer a message (response-cached per question)
  GET  /api/history/{user_id}   -> paginated chat history, newest first

Run from the project root:
    uvicorn app.server:app --reload --port 3000

The config file is config/config.yaml unless RAGCHAT_CONFIG names another
(`ragchat serve --config` sets it).
"""
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, field_validator

from ragchat.config import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH, load_settings
from ragchat.exceptions import (
    CorpusLoadError,
    ExternalStoreError,
    GenerationError,
    NotInitializedError,
    ProviderError,
    RagChatError,
)
from ragchat.serving.container import Container, cleanup_container, create_container
from ragchat.utils.logger import setup_logger
from ragchat.utils.pagination import PaginationMetadata, get_pagination_metadata, page_to_offset


def config_path() -> str:
    """Config file chosen by `ragchat serve --config`, else the default."""
    return os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the container once at startup unless one was installed already (tests)."""
    owns_container = getattr(app.state, "container", None) is None
    if owns_container:
        settings = load_settings(config_path())
        setup_logger(settings.logging.level, settings.logging.file)
        logger.info("[Server] Building services...")
        app.state.container = await create_container(settings)
    yield
    if owns_container:
        await cleanup_container(app.state.container)
        app.state.container = None
        logger.info("[Server] Services shut down.")


app = FastAPI(
    title="RAG Chatbot API",
    description="Retrieval-augmented chat over a plain-text knowledge base",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class ChatRequest(BaseModel):
    message: str
    user_id: str
    session_id: str

    @field_validator("message", "user_id", "session_id")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class ChatResponse(BaseModel):
    response: str
    cached: bool
    timestamp: str


class HistoryItem(BaseModel):
    message: str
    response: str
    session_id: str
    timestamp: str


class HistoryResponse(BaseModel):
    user_id: str
    items: list[HistoryItem]
    pagination: PaginationMetadata


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: list[tuple[type[RagChatError], int]] = [
    (NotInitializedError, 503),
    (CorpusLoadError, 503),
    (ProviderError, 502),
    (ExternalStoreError, 502),
]


@app.exception_handler(RagChatError)
async def ragchat_error_handler(request: Request, exc: RagChatError) -> JSONResponse:
    status = 500
    if isinstance(exc, GenerationError):
        status = exc.status_code
    else:
        for error_type, code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status = code
                break
    logger.error(f"[API] {request.method} {request.url.path} -> {status}: {exc}")
    return JSONResponse(status_code=status, content={"error": exc.message})


def _container(request: Request) -> Container:
    container: Optional[Container] = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return container


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health(request: Request):
    container = _container(request)
    stats = await container.retriever.stats()
    return {
        "status": "ok",
        "retriever": stats["kind"],
        "chunks": stats["count"],
        "embedding": container.embedder.usage_summary(),
    }


@app.post("/api/chat", response_model=ChatResponse)
async def chat(body: ChatRequest, request: Request):
    container = _container(request)
    logger.info(f"[API] Chat | user={body.user_id} session={body.session_id} | query={body.message[:80]!r}")
    result = await container.chat_service.process_chat(body.message, body.user_id, body.session_id)
    return ChatResponse(response=result.response, cached=result.cached, timestamp=result.timestamp.isoformat())


@app.get("/api/history/{user_id}", response_model=HistoryResponse)
async def history(
    user_id: str,
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    container = _container(request)
    total = await container.history.count_for_user(user_id)
    records = await container.history.list_for_user(user_id, offset=page_to_offset(page, limit), limit=limit)
    return HistoryResponse(
        user_id=user_id,
        items=[
            HistoryItem(
                message=r.message,
                response=r.response,
                session_id=r.session_id,
                timestamp=r.timestamp.isoformat(),
            )
            for r in records
        ],
        pagination=get_pagination_metadata(total, page, limit),
    )
