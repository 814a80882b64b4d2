"""FastAPI application setup for the Cairn knowledge service."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from .acquisition import (
    EmbeddingAcquirer,
    EmbeddingProvider,
    HttpEmbeddingProvider,
    LocalEmbeddingProvider,
    UnavailableEmbeddingProvider,
)
from .config import Settings
from .embeddings import EmbeddingService, prepare_embedding_input
from .errors import ProcessingError, StoreError, ValidationError
from .knowledge_store import KnowledgeStore, build_store
from .models import KnowledgeItem
from .observability import MetricsRecorder
from .processing import ProcessingClient, Recommendation
from .service import KnowledgeService, UpsertOutcome

logger = logging.getLogger(__name__)


_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    cairn_logger = logging.getLogger("cairn")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        cairn_logger.handlers = []
        for handler in handlers:
            cairn_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        cairn_logger.addHandler(handler)

    if cairn_logger.level == logging.NOTSET or cairn_logger.level > logging.INFO:
        cairn_logger.setLevel(logging.INFO)
    cairn_logger.propagate = False
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        knowledge_service: KnowledgeService,
        embedding_service: EmbeddingService | None,
        embedding_provider: EmbeddingProvider,
        processing_client: ProcessingClient,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.knowledge_service = knowledge_service
        self.embedding_service = embedding_service
        self.embedding_provider = embedding_provider
        self.processing_client = processing_client
        self.metrics = metrics


def _build_embedding_service(settings: Settings) -> EmbeddingService | None:
    try:
        return EmbeddingService(settings, validate=False)
    except ValueError as exc:
        logger.warning("app.embedding.unconfigured reason=%s", exc)
        return None


def _build_provider(settings: Settings, embedding_service: EmbeddingService | None) -> EmbeddingProvider:
    if settings.is_remote_embedding:
        return HttpEmbeddingProvider.from_settings(settings)
    if embedding_service is not None:
        return LocalEmbeddingProvider(embedding_service)
    return UnavailableEmbeddingProvider("No embedding backend is configured.")


def create_app(
    *,
    settings: Settings | None = None,
    store: KnowledgeStore | None = None,
    embedding_service: EmbeddingService | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    processing_client: ProcessingClient | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    store = store or build_store(settings)
    if embedding_service is None and embedding_provider is None:
        embedding_service = _build_embedding_service(settings)
    embedding_provider = embedding_provider or _build_provider(settings, embedding_service)
    processing_client = processing_client or ProcessingClient.from_settings(settings)

    knowledge_service = KnowledgeService(
        store,
        EmbeddingAcquirer(embedding_provider, metrics=metrics),
        metrics=metrics,
    )
    logger.info(
        "app.start store=%s embedding_provider=%s",
        store.backend_name,
        getattr(embedding_provider, "name", type(embedding_provider).__name__),
    )

    app = FastAPI(title="Cairn")
    app.state.services = ApplicationState(
        settings=settings,
        knowledge_service=knowledge_service,
        embedding_service=embedding_service,
        embedding_provider=embedding_provider,
        processing_client=processing_client,
        metrics=metrics,
    )

    @app.on_event("shutdown")
    async def _close_clients() -> None:
        state: ApplicationState = app.state.services
        state.knowledge_service.store.close()
        state.processing_client.close()
        if state.embedding_service is not None:
            state.embedding_service.close()

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_knowledge_service(request: Request) -> KnowledgeService:
        return get_state(request).knowledge_service

    def get_embedding_service(request: Request) -> EmbeddingService | None:
        return get_state(request).embedding_service

    def get_processing_client(request: Request) -> ProcessingClient:
        return get_state(request).processing_client

    def get_settings_dependency(request: Request) -> Settings:
        return get_state(request).settings

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    async def _read_payload(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise HTTPException(status_code=400, detail="Request body must be valid JSON") from exc
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")
        return payload

    def _store_failure(exc: StoreError) -> HTTPException:
        return HTTPException(status_code=502, detail=str(exc))

    def _serialize(item: KnowledgeItem, *, include_embedding: bool = True) -> dict[str, Any]:
        return item.to_dict(include_embedding=include_embedding)

    def _upsert_response(outcome: UpsertOutcome) -> JSONResponse:
        payload = _serialize(outcome.item)
        payload["embedding_error"] = str(outcome.embedding.error) if outcome.embedding.error else None
        return JSONResponse(payload, status_code=201 if outcome.created else 200)

    @app.get("/health", response_class=JSONResponse)
    async def health(request: Request) -> JSONResponse:
        state = get_state(request)
        try:
            await asyncio.to_thread(state.processing_client.health_check)
            processing = "ok"
        except ProcessingError as exc:
            logger.warning("health.processing.unavailable error=%s", exc)
            processing = "unavailable"
        return JSONResponse(
            {
                "status": "ok",
                "store": state.knowledge_service.store.backend_name,
                "embedding": getattr(state.embedding_provider, "name", "custom"),
                "processing": processing,
            }
        )

    @app.post("/api/generate-embedding", response_class=JSONResponse)
    async def generate_embedding(
        request: Request,
        embedding_service: EmbeddingService | None = Depends(get_embedding_service),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        text = payload.get("text")
        if not text or not isinstance(text, str):
            return JSONResponse({"error": "Text is required"}, status_code=400)
        try:
            if embedding_service is None:
                raise RuntimeError("Embedding backend is not configured")
            vector = await asyncio.to_thread(embedding_service.embed_one, prepare_embedding_input(text))
        except Exception as exc:
            logger.error("embedding.proxy.failed error=%s", exc)
            return JSONResponse(
                {"error": "Failed to generate embedding", "detail": str(exc)},
                status_code=500,
            )
        return JSONResponse({"embedding": vector, "dimension": len(vector)})

    @app.get("/api/knowledge", response_class=JSONResponse)
    async def list_knowledge(
        include_embedding: bool = Query(False),
        service: KnowledgeService = Depends(get_knowledge_service),
    ) -> JSONResponse:
        try:
            items = await asyncio.to_thread(service.get_all)
        except StoreError as exc:
            raise _store_failure(exc) from exc
        return JSONResponse([_serialize(item, include_embedding=include_embedding) for item in items])

    @app.get("/api/knowledge/{item_id}", response_class=JSONResponse)
    async def get_knowledge(
        item_id: str,
        service: KnowledgeService = Depends(get_knowledge_service),
    ) -> JSONResponse:
        try:
            item = await asyncio.to_thread(service.get_by_id, item_id)
        except StoreError as exc:
            raise _store_failure(exc) from exc
        if item is None:
            raise HTTPException(status_code=404, detail="Knowledge item not found")
        return JSONResponse(_serialize(item))

    @app.post("/api/knowledge", response_class=JSONResponse)
    async def upsert_knowledge(
        request: Request,
        service: KnowledgeService = Depends(get_knowledge_service),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        category = payload.get("category")
        content = payload.get("content")
        if not isinstance(category, str) or not isinstance(content, str):
            raise HTTPException(status_code=400, detail="category and content must be strings")
        try:
            outcome = await asyncio.to_thread(service.upsert_with_outcome, category, content, payload.get("tags"))
        except StoreError as exc:
            raise _store_failure(exc) from exc
        return _upsert_response(outcome)

    @app.patch("/api/knowledge/{item_id}", response_class=JSONResponse)
    async def update_knowledge(
        item_id: str,
        request: Request,
        service: KnowledgeService = Depends(get_knowledge_service),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        try:
            item = await asyncio.to_thread(service.update, item_id, payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StoreError as exc:
            raise _store_failure(exc) from exc
        if item is None:
            raise HTTPException(status_code=404, detail="Knowledge item not found")
        return JSONResponse(_serialize(item))

    @app.delete("/api/knowledge/{item_id}", response_class=JSONResponse)
    async def delete_knowledge(
        item_id: str,
        service: KnowledgeService = Depends(get_knowledge_service),
    ) -> JSONResponse:
        try:
            await asyncio.to_thread(service.delete, item_id)
        except StoreError as exc:
            raise _store_failure(exc) from exc
        return JSONResponse({"status": "deleted", "id": item_id})

    @app.get("/api/categories", response_class=JSONResponse)
    async def list_categories(service: KnowledgeService = Depends(get_knowledge_service)) -> JSONResponse:
        try:
            categories = await asyncio.to_thread(service.list_categories)
        except StoreError as exc:
            raise _store_failure(exc) from exc
        return JSONResponse({"categories": categories})

    @app.get("/api/stats", response_class=JSONResponse)
    async def database_stats(service: KnowledgeService = Depends(get_knowledge_service)) -> JSONResponse:
        try:
            stats = await asyncio.to_thread(service.stats)
        except StoreError as exc:
            raise _store_failure(exc) from exc
        return JSONResponse({**stats, "status": "success"})

    @app.post("/api/process-text", response_class=JSONResponse)
    async def process_text(
        request: Request,
        client: ProcessingClient = Depends(get_processing_client),
        settings: Settings = Depends(get_settings_dependency),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        text = payload.get("text")
        if not text or not isinstance(text, str):
            raise HTTPException(status_code=400, detail="text is required")
        threshold = payload.get("threshold", settings.similarity_threshold)
        try:
            threshold = float(threshold)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail="threshold must be numeric") from exc
        try:
            result = await asyncio.to_thread(client.process_text, text, threshold)
        except ProcessingError as exc:
            raise HTTPException(status_code=exc.status_code or 502, detail=str(exc)) from exc
        return JSONResponse(result.to_dict())

    @app.post("/api/recommendations/accept", response_class=JSONResponse)
    async def accept_recommendation(
        request: Request,
        service: KnowledgeService = Depends(get_knowledge_service),
    ) -> JSONResponse:
        payload = await _read_payload(request)
        raw = payload.get("recommendation", payload)
        if not isinstance(raw, dict):
            raise HTTPException(status_code=400, detail="recommendation must be an object")
        recommendation = Recommendation.from_dict(raw)
        if not recommendation.category or not recommendation.updated_text:
            raise HTTPException(status_code=400, detail="recommendation needs category and updated_text")
        try:
            outcome = await asyncio.to_thread(
                service.upsert_with_outcome,
                recommendation.category,
                recommendation.updated_text,
                recommendation.tags,
            )
        except StoreError as exc:
            raise _store_failure(exc) from exc
        return _upsert_response(outcome)

    @app.get("/metrics")
    async def metrics_endpoint(metrics: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics is None or not metrics.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        return Response(content=metrics.render_prometheus(), media_type=metrics.prometheus_content_type)

    return app
