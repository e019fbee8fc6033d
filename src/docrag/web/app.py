"""FastAPI application exposing the DocRAG JSON API."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from docrag.config import AppConfig
from docrag.errors import (
    CapabilityError,
    DimensionMismatchError,
    DocRagError,
    DocumentNotFoundError,
)
from docrag.models import DocumentStatus
from docrag.providers import Services, build_services, effective_config, open_settings
from docrag.settings import SettingsStore

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="DocRAG API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class SearchPayload(BaseModel):
    query: str


class SettingValuePayload(BaseModel):
    value: str | None = None


class SettingPayload(BaseModel):
    key: str
    value: str | None = None
    description: str | None = None
    category: str = "general"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def configure_logging(config: AppConfig) -> None:
    level = config.logging_level()
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")
    logging.getLogger().setLevel(level)


def get_services() -> Iterator[Services]:
    services = build_services(AppConfig.from_env(), base_dir=Path.cwd())
    configure_logging(services.config)
    try:
        yield services
    finally:
        services.close()


def get_settings_store() -> Iterator[SettingsStore]:
    store = open_settings(AppConfig.from_env(), Path.cwd())
    try:
        yield store
    finally:
        store.close()


def error_status(error: DocRagError) -> int:
    if isinstance(error, DimensionMismatchError):
        return 409
    if isinstance(error, DocumentNotFoundError):
        return 404
    if isinstance(error, CapabilityError):
        return 502
    return 500


@app.exception_handler(DocRagError)
async def handle_docrag_error(request: Request, exc: DocRagError) -> JSONResponse:
    LOGGER.error(
        "Request %s failed: %s",
        request.url.path,
        exc,
        extra={
            "event": "request_failed",
            "reason": exc.reason.value,
            "stage": exc.stage.value if exc.stage else None,
        },
    )
    return JSONResponse(
        status_code=error_status(exc),
        content={
            "error": "could not produce an answer",
            "reason": exc.reason.value,
            "stage": exc.stage.value if exc.stage else None,
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    configure_logging(effective_config(AppConfig.from_env(), Path.cwd()))


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "timestamp": _timestamp()}


@app.get("/api/v1/dashboard/stats")
async def dashboard_stats(services: Services = Depends(get_services)) -> dict[str, Any]:
    stats = services.store.get_stats()
    return {
        "total_documents": stats["document_count"],
        "indexed_chunks": stats["indexed_chunk_count"],
        "documents_by_status": stats["by_status"],
        "embedding_dimension": stats["dimension"],
        "metric": stats["metric"],
        "system_health": "healthy",
        "timestamp": _timestamp(),
    }


@app.get("/api/v1/documents")
async def list_documents(
    page: int = 1,
    per_page: int = 20,
    status: DocumentStatus | None = None,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    page = max(1, page)
    per_page = max(1, min(per_page, 100))
    documents = services.store.list_documents(status=status)
    total = len(documents)
    window = documents[(page - 1) * per_page : page * per_page]
    return {
        "documents": [doc.to_dict() for doc in window],
        "pagination": {
            "current_page": page,
            "per_page": per_page,
            "total_count": total,
            "total_pages": math.ceil(total / per_page),
        },
    }


@app.post("/api/v1/documents")
async def upload_document(
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
) -> JSONResponse:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    content = await file.read()
    LOGGER.info("Uploading: %s (%d bytes)", file.filename, len(content))

    try:
        document, result = await asyncio.to_thread(
            services.indexer.ingest, file.filename, content, file.content_type
        )
    except ValueError as exc:
        return JSONResponse(
            status_code=422,
            content={"error": "Upload failed", "message": str(exc)},
        )

    if not result.success:
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "document": document.to_dict(),
                "processing": result.to_dict(),
                "message": "Document stored but processing failed",
            },
        )
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "document": document.to_dict(),
            "processing": result.to_dict(),
            "message": "Document uploaded, embedded, and indexed successfully",
        },
    )


@app.delete("/api/v1/documents/{doc_id}")
async def delete_document(doc_id: int, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Delete a document, its chunks and its stored upload."""
    deleted = await asyncio.to_thread(services.indexer.delete, doc_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Document with ID {doc_id} not found")
    return {"success": True, "deleted_id": doc_id}


@app.post("/api/v1/search")
async def search(payload: SearchPayload, services: Services = Depends(get_services)) -> dict[str, Any]:
    query = payload.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")

    result = await asyncio.to_thread(services.searcher.answer, query)
    context = result.context
    return {
        "success": True,
        "query": query,
        "answer": result.answer,
        "sources": [asdict(source) for source in result.sources],
        "chunks_found": result.chunks_found,
        "context": {
            "total_tokens": context.total_tokens,
            "budget": context.budget,
            "truncated": context.truncated,
            "dropped": context.dropped,
        }
        if context is not None
        else None,
        "timestamp": _timestamp(),
    }


@app.get("/api/v1/settings")
async def list_settings(store: SettingsStore = Depends(get_settings_store)) -> dict[str, Any]:
    if store.count() == 0:
        store.initialize_defaults(AppConfig.from_env())
    return {
        "success": True,
        "settings": {
            category: [setting.to_dict() for setting in settings]
            for category, settings in store.grouped().items()
        },
        "timestamp": _timestamp(),
    }


@app.get("/api/v1/settings/{key}")
async def get_setting(key: str, store: SettingsStore = Depends(get_settings_store)) -> dict[str, Any]:
    setting = store.get(key)
    if setting is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return {"success": True, "setting": setting.to_dict()}


@app.put("/api/v1/settings/{key}")
async def update_setting(
    key: str,
    payload: SettingValuePayload,
    store: SettingsStore = Depends(get_settings_store),
) -> dict[str, Any]:
    setting = store.update_value(key, payload.value)
    if setting is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return {
        "success": True,
        "setting": setting.to_dict(),
        "message": "Setting updated successfully",
    }


@app.post("/api/v1/settings")
async def create_setting(
    payload: SettingPayload, store: SettingsStore = Depends(get_settings_store)
) -> dict[str, Any]:
    try:
        setting = store.set(
            payload.key,
            payload.value,
            description=payload.description,
            category=payload.category,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {
        "success": True,
        "setting": setting.to_dict(),
        "message": "Setting created successfully",
    }
