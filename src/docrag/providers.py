"""Provider wiring, resolved once when a command or the web app starts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from docrag.config import AppConfig
from docrag.embedding.encoder import EmbeddingConfig, EmbeddingModel, OpenAIEmbeddingModel
from docrag.embedding.tokenizer import TokenizerRegistry
from docrag.errors import ConfigurationError
from docrag.generation.completion import ChatConfig, OpenAIChatGenerator
from docrag.index.indexer import Indexer
from docrag.index.search import Searcher
from docrag.index.storage import SQLiteVectorStore
from docrag.ingestion.blob_storage import LocalBlobStorage
from docrag.openai_client import build_client
from docrag.settings import SettingsResolver, SettingsStore
from docrag.utils.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)


def build_embedder(
    config: AppConfig, tokenizers: TokenizerRegistry, *, client=None
) -> EmbeddingModel:
    """Create the embedding capability named by ``config.embedding_provider``."""
    if config.embedding_provider == "openai":
        return OpenAIEmbeddingModel(
            client or build_client(timeout=config.request_timeout),
            tokenizers,
            EmbeddingConfig(
                model_name=config.embedding_model,
                dimension=config.embedding_dimension,
                retry=RetryPolicy(attempts=config.retry_attempts),
            ),
        )
    if config.embedding_provider == "local":
        from docrag.embedding.local import SentenceTransformerEmbeddingModel

        return SentenceTransformerEmbeddingModel(
            config.embedding_model, expected_dimension=config.embedding_dimension
        )
    raise ConfigurationError(f"Unknown embedding provider: {config.embedding_provider}")


@dataclass(slots=True)
class Services:
    config: AppConfig
    store: SQLiteVectorStore
    settings: SettingsStore
    indexer: Indexer
    searcher: Searcher

    def close(self) -> None:
        self.store.close()
        self.settings.close()


def open_settings(config: AppConfig, base_dir: Path | None = None) -> SettingsStore:
    db_path = config.resolve_db_path(base_dir)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return SettingsStore(db_path)


def effective_config(base_config: AppConfig, base_dir: Path | None = None) -> AppConfig:
    """Layer the settings table over ``base_config`` without wiring any capability."""
    settings = open_settings(base_config, base_dir)
    try:
        return SettingsResolver(settings, defaults=base_config, environ={}).config()
    finally:
        settings.close()


def build_services(
    base_config: AppConfig,
    *,
    base_dir: Path | None = None,
    tokenizers: TokenizerRegistry | None = None,
    client=None,
) -> Services:
    """Resolve settings and wire store, capabilities and pipelines together.

    ``base_config`` already carries environment overrides (``AppConfig.from_env``);
    values from the settings table are layered on top of it.
    """
    settings = open_settings(base_config, base_dir)
    store: SQLiteVectorStore | None = None
    try:
        config = SettingsResolver(settings, defaults=base_config, environ={}).config()
        tokenizers = tokenizers or TokenizerRegistry()
        client = client or build_client(timeout=config.request_timeout)

        embedder = build_embedder(config, tokenizers, client=client)
        store = SQLiteVectorStore(
            config.resolve_db_path(base_dir),
            dimension=embedder.dimension,
            index_name=config.index_name,
        )
        generator = OpenAIChatGenerator(
            client,
            tokenizers,
            ChatConfig(model_name=config.chat_model, retry=RetryPolicy(attempts=config.retry_attempts)),
        )
        indexer = Indexer(
            embedder,
            store,
            storage=LocalBlobStorage(config.resolve_storage_dir(base_dir)),
            chunk_chars=config.chunk_chars,
            overlap=config.overlap,
        )
        searcher = Searcher(
            embedder,
            store,
            generator=generator,
            tokenizers=tokenizers,
            top_k=config.top_k,
            context_budget=config.context_budget,
            max_output_tokens=config.max_output_tokens,
        )
    except Exception:
        if store is not None:
            store.close()
        settings.close()
        raise
    LOGGER.debug(
        "Services ready: embedding=%s/%s (%d dims), chat=%s",
        config.embedding_provider,
        config.embedding_model,
        embedder.dimension,
        config.chat_model,
    )
    return Services(config=config, store=store, settings=settings, indexer=indexer, searcher=searcher)
