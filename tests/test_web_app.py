"""Tests for the FastAPI web application."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import pytest
from conftest import FakeEmbedder, FakeGenerator, word_registry
from fastapi.testclient import TestClient

from docrag.config import AppConfig
from docrag.embedding.encoder import EmbeddingConfig, OpenAIEmbeddingModel
from docrag.errors import (
    DimensionMismatchError,
    PipelineError,
    Stage,
    TransientCapabilityError,
)
from docrag.index.indexer import Indexer
from docrag.index.search import NO_RESULTS_ANSWER, Searcher
from docrag.index.storage import SQLiteVectorStore
from docrag.providers import Services
from docrag.settings import KNOWN_SETTINGS, SettingsStore
from docrag.web.app import app, error_status, get_services, get_settings_store, startup_event

client = TestClient(app)


@pytest.fixture
def settings_store(tmp_path: Path):
    store = SettingsStore(tmp_path / "settings.db")
    app.dependency_overrides[get_settings_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_settings_store, None)
    store.close()


@pytest.fixture
def services(store: SQLiteVectorStore, tmp_path: Path):
    embedder = FakeEmbedder()
    wired = Services(
        config=AppConfig(),
        store=store,
        settings=SettingsStore(tmp_path / "settings.db"),
        indexer=Indexer(embedder, store),
        searcher=Searcher(
            embedder, store, generator=FakeGenerator("From the docs."), tokenizers=word_registry()
        ),
    )
    app.dependency_overrides[get_services] = lambda: wired
    yield wired
    app.dependency_overrides.pop(get_services, None)
    wired.settings.close()


@pytest.fixture
def mock_services():
    mocked = MagicMock()
    app.dependency_overrides[get_services] = lambda: mocked
    yield mocked
    app.dependency_overrides.pop(get_services, None)


class TestHealth:
    def test_health(self) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestDocuments:
    """Tests for /api/v1/documents."""

    def test_upload_and_list(self, services: Services) -> None:
        response = client.post(
            "/api/v1/documents",
            files={"file": ("notes.txt", b"the launch is in march", "text/plain")},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["document"]["status"] == "indexed"
        assert body["processing"]["chunks_created"] == 1

        listing = client.get("/api/v1/documents").json()
        assert listing["pagination"]["total_count"] == 1
        assert listing["documents"][0]["title"] == "notes.txt"

    def test_upload_failure_reports_reason(self, services: Services) -> None:
        services.indexer.embedder.failures[1] = TransientCapabilityError("down")

        response = client.post(
            "/api/v1/documents", files={"file": ("notes.txt", b"some text", "text/plain")}
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["document"]["status"] == "failed"
        assert body["processing"]["stage"] == "embedding"
        assert body["processing"]["reason"] == "unavailable"

    def test_empty_upload(self, services: Services) -> None:
        response = client.post(
            "/api/v1/documents", files={"file": ("empty.txt", b"", "text/plain")}
        )

        assert response.status_code == 422
        assert response.json()["error"] == "Upload failed"

    def test_delete(self, services: Services) -> None:
        uploaded = client.post(
            "/api/v1/documents", files={"file": ("gone.txt", b"short lived", "text/plain")}
        ).json()
        doc_id = uploaded["document"]["id"]

        response = client.delete(f"/api/v1/documents/{doc_id}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted_id": doc_id}
        assert client.get("/api/v1/documents").json()["documents"] == []

    def test_delete_missing(self, services: Services) -> None:
        assert client.delete("/api/v1/documents/999").status_code == 404

    def test_pagination(self, services: Services) -> None:
        for i in range(3):
            services.store.create_document(f"doc{i}.txt", "text")

        body = client.get("/api/v1/documents", params={"page": 2, "per_page": 2}).json()

        assert len(body["documents"]) == 1
        assert body["pagination"]["total_pages"] == 2

    def test_filter_by_status(self, services: Services) -> None:
        services.store.create_document("pending.txt", "text")

        body = client.get("/api/v1/documents", params={"status": "indexed"}).json()

        assert body["documents"] == []


class TestDashboard:
    def test_stats(self, services: Services) -> None:
        client.post("/api/v1/documents", files={"file": ("a.txt", b"alpha", "text/plain")})

        body = client.get("/api/v1/dashboard/stats").json()

        assert body["total_documents"] == 1
        assert body["indexed_chunks"] == 1
        assert body["documents_by_status"]["indexed"] == 1
        assert body["metric"] == "cosine"


class TestSearch:
    """Tests for POST /api/v1/search."""

    def test_empty_query(self, mock_services: MagicMock) -> None:
        response = client.post("/api/v1/search", json={"query": "   "})
        assert response.status_code == 400

    def test_answer_with_sources(self, services: Services) -> None:
        client.post(
            "/api/v1/documents",
            files={"file": ("plan.txt", b"the launch is in march", "text/plain")},
        )

        response = client.post("/api/v1/search", json={"query": "the launch is in march"})

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "From the docs."
        assert body["chunks_found"] == 1
        assert body["sources"][0]["title"] == "plan.txt"
        assert body["context"]["truncated"] is False

    def test_no_documents(self, services: Services) -> None:
        body = client.post("/api/v1/search", json={"query": "anything"}).json()

        assert body["answer"] == NO_RESULTS_ANSWER
        assert body["sources"] == []
        assert body["context"] is None

    @pytest.mark.parametrize(
        "error,status,reason",
        [
            (TransientCapabilityError("down").at(Stage.GENERATION), 502, "unavailable"),
            (DimensionMismatchError("wrong size", stage=Stage.QUERY_EMBEDDING), 409, "dimension_mismatch"),
            (PipelineError("boom", stage=Stage.SEARCH), 500, "internal"),
        ],
    )
    def test_failures_map_to_status(
        self, mock_services: MagicMock, error, status: int, reason: str
    ) -> None:
        mock_services.searcher.answer.side_effect = error

        response = client.post("/api/v1/search", json={"query": "question"})

        assert response.status_code == status
        body = response.json()
        assert body["error"] == "could not produce an answer"
        assert body["reason"] == reason
        assert body["stage"] == error.stage.value

    def test_provider_dimension_mismatch_is_conflict(
        self, store: SQLiteVectorStore, tmp_path: Path
    ) -> None:
        client_mock = Mock()
        client_mock.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.5] * 12)], usage=None
        )
        embedder = OpenAIEmbeddingModel(
            client_mock,
            word_registry(),
            EmbeddingConfig(model_name="text-embedding-ada-002", dimension=store.dimension),
        )
        wired = Services(
            config=AppConfig(),
            store=store,
            settings=SettingsStore(tmp_path / "settings.db"),
            indexer=Indexer(embedder, store),
            searcher=Searcher(
                embedder, store, generator=FakeGenerator(), tokenizers=word_registry()
            ),
        )
        app.dependency_overrides[get_services] = lambda: wired
        try:
            response = client.post("/api/v1/search", json={"query": "question"})
        finally:
            app.dependency_overrides.pop(get_services, None)
            wired.settings.close()

        assert response.status_code == 409
        assert response.json()["reason"] == "dimension_mismatch"
        assert response.json()["stage"] == "query_embedding"


class TestErrorStatus:
    def test_configuration_is_server_error(self) -> None:
        from docrag.errors import ConfigurationError, DocumentNotFoundError

        assert error_status(ConfigurationError("x")) == 500
        assert error_status(DocumentNotFoundError("x")) == 404


class TestSettings:
    """Tests for /api/v1/settings."""

    def test_list_initialises_defaults(self, settings_store: SettingsStore) -> None:
        body = client.get("/api/v1/settings").json()

        assert body["success"] is True
        assert {s["key"] for s in body["settings"]["ai"]} >= {
            "openai_chat_model",
            "openai_context_budget",
        }
        assert settings_store.count() == len(KNOWN_SETTINGS)

    def test_get_missing(self, settings_store: SettingsStore) -> None:
        assert client.get("/api/v1/settings/nope").status_code == 404

    def test_create_update_get(self, settings_store: SettingsStore) -> None:
        created = client.post(
            "/api/v1/settings",
            json={"key": "theme", "value": "dark", "category": "ui", "description": "UI theme"},
        )
        updated = client.put("/api/v1/settings/theme", json={"value": "light"})
        fetched = client.get("/api/v1/settings/theme")

        assert created.status_code == 200
        assert updated.json()["setting"]["value"] == "light"
        assert fetched.json()["setting"] == {
            **fetched.json()["setting"],
            "key": "theme",
            "value": "light",
            "category": "ui",
            "description": "UI theme",
        }

    def test_update_missing(self, settings_store: SettingsStore) -> None:
        response = client.put("/api/v1/settings/nope", json={"value": "x"})
        assert response.status_code == 404

    def test_create_requires_key(self, settings_store: SettingsStore) -> None:
        response = client.post("/api/v1/settings", json={"key": "", "value": "x"})
        assert response.status_code == 422


class TestStartupLogging:
    """The startup hook applies log_level resolved from the settings table."""

    def test_stored_log_level_applied(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("DOCRAG_DB_PATH", raising=False)
        monkeypatch.setenv("LOG_LEVEL", "info")
        (tmp_path / "data").mkdir()
        settings = SettingsStore(tmp_path / "data" / "docrag.db")
        settings.set("log_level", "error", category="system")
        settings.close()
        root = logging.getLogger()
        previous = root.level

        try:
            asyncio.run(startup_event())
            assert root.level == logging.ERROR
        finally:
            root.setLevel(previous)
