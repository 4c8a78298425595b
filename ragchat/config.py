"""
Application configuration
--------------------------
Typed settings loaded from config/config.yaml, with environment variables
(and a .env file, via python-dotenv) taking precedence over the file.

    settings = load_settings("config/config.yaml")
    settings.cache.ttl_seconds  # -> 3600
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from ragchat.exceptions import ConfigError

DEFAULT_CONFIG_PATH = "config/config.yaml"
# Set by `ragchat serve --config` so the uvicorn-imported app loads the same file
CONFIG_PATH_ENV = "RAGCHAT_CONFIG"


class EmbeddingSettings(BaseModel):
    """Which embedding backend to use. The remote one wins when an API key is set."""

    openai_api_key: str = ""
    remote_model: str = "text-embedding-3-small"
    remote_dimensions: int = Field(default=1536, gt=0)
    remote_batch_size: int = Field(default=512, gt=0, le=2048)
    local_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    local_device: str = "cpu"
    timeout_seconds: float = Field(default=30.0, gt=0)


class CacheSettings(BaseModel):
    redis_url: str = ""                 # empty -> in-process MemoryStore
    ttl_seconds: int = Field(default=3600, gt=0)


class ChromaSettings(BaseModel):
    url: str = "http://localhost:8000"
    collection: str = "knowledge_base"
    space: str = "cosine"
    construction_ef: int = Field(default=200, gt=0)
    search_ef: int = Field(default=100, gt=0)
    m: int = Field(default=16, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)


class RetrievalSettings(BaseModel):
    use_chromadb: bool = False
    knowledge_file: str = "knowledge.txt"
    chunk_words: int = Field(default=250, gt=0)
    top_k: int = Field(default=3, gt=0)
    chroma: ChromaSettings = Field(default_factory=ChromaSettings)


class GenerationSettings(BaseModel):
    api_key: str = ""
    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "openai/gpt-3.5-turbo"
    max_tokens: int = Field(default=500, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    app_url: str = "http://localhost:3000"
    app_title: str = "RAG Chatbot"


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/ragchat.log"


class AppSettings(BaseModel):
    """Top-level settings shared by the CLI, the HTTP server and the container."""

    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# --- Environment overrides ----------------------------------------------------

def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# env var -> (path into the settings dict, converter)
_ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "OPENAI_API_KEY": (("embedding", "openai_api_key"), str),
    "EMBEDDING_MODEL": (("embedding", "remote_model"), str),
    "LOCAL_EMBEDDING_MODEL": (("embedding", "local_model"), str),
    "REDIS_URL": (("cache", "redis_url"), str),
    "CACHE_TTL_SECONDS": (("cache", "ttl_seconds"), int),
    "USE_CHROMADB": (("retrieval", "use_chromadb"), _as_bool),
    "KNOWLEDGE_FILE": (("retrieval", "knowledge_file"), str),
    "CHROMA_URL": (("retrieval", "chroma", "url"), str),
    "CHROMA_HNSW_EF": (("retrieval", "chroma", "construction_ef"), int),
    "CHROMA_HNSW_M": (("retrieval", "chroma", "m"), int),
    "OPENROUTER_API_KEY": (("generation", "api_key"), str),
    "LLM_MODEL": (("generation", "model"), str),
    "APP_URL": (("generation", "app_url"), str),
    "PORT": (("server", "port"), int),
    "LOG_LEVEL": (("logging", "level"), str),
}


def _apply_env_overrides(raw: dict, environ: dict[str, str]) -> dict:
    for var, (path, convert) in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        try:
            converted = convert(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {var}: {value!r}", {"env": var}) from exc
        node = raw
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[path[-1]] = converted
    return raw


def load_settings(
    path: str | Path = DEFAULT_CONFIG_PATH,
    environ: Optional[dict[str, str]] = None,
) -> AppSettings:
    """
    Build AppSettings from the YAML file (if present) plus env overrides.

    Args:
        path: YAML config file. A missing file means "defaults only".
        environ: Mapping used for overrides; defaults to os.environ after
                 loading .env.

    Raises:
        ConfigError: unreadable YAML or values that fail validation.
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    config_path = Path(path)
    raw: dict = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Could not parse config file {config_path}", {"error": str(exc)}) from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")

    raw = _apply_env_overrides(raw, environ)
    try:
        return AppSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError("Invalid configuration", {"errors": exc.errors()}) from exc
