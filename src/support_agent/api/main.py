"""FastAPI entrypoint for the embeddable chat widget."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from support_agent.agent.orchestrator import ChatTurnOrchestrator
from support_agent.agent.providers import available_providers
from support_agent.api.tenants import InMemoryTenantDirectory, SqlTenantDirectory, TenantDirectory
from support_agent.config import Settings, get_settings
from support_agent.errors import ConfigurationError
from support_agent.ingest.embedder import create_embedder
from support_agent.models import ChatMessage
from support_agent.obs.logging import configure_logging
from support_agent.obs.session_cache import (
    InMemorySessionSpanCache,
    SessionSpanCache,
    create_session_cache,
)
from support_agent.obs.tracing import Telemetry, create_telemetry
from support_agent.retrieval.pg_store import PgVectorChunkStore
from support_agent.retrieval.retriever import ContextRetriever
from support_agent.retrieval.vector_store import ChunkStore, InMemoryChunkStore

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(min_length=1)
    session_id: str | None = Field(default=None, alias="sessionId")


@dataclass(slots=True)
class Services:
    """Explicitly constructed collaborators shared by all requests."""

    settings: Settings
    orchestrator: ChatTurnOrchestrator
    tenants: TenantDirectory
    telemetry: Telemetry
    session_cache: SessionSpanCache


def build_services(
    settings: Settings,
    *,
    tenants: TenantDirectory | None = None,
    chunk_store: ChunkStore | None = None,
) -> Services:
    telemetry = create_telemetry(settings)
    session_cache = create_session_cache(settings)
    if chunk_store is None:
        chunk_store = (
            PgVectorChunkStore(settings.database_url)
            if settings.database_url
            else InMemoryChunkStore()
        )
    if tenants is None:
        tenants = (
            SqlTenantDirectory(settings.database_url)
            if settings.database_url
            else InMemoryTenantDirectory()
        )
    retriever = ContextRetriever(chunk_store, create_embedder(settings), settings.retrieval)
    orchestrator = ChatTurnOrchestrator(
        retriever=retriever,
        settings=settings,
        telemetry=telemetry,
        session_cache=session_cache,
    )
    return Services(
        settings=settings,
        orchestrator=orchestrator,
        tenants=tenants,
        telemetry=telemetry,
        session_cache=session_cache,
    )


def create_app(services: Services | None = None) -> FastAPI:
    if services is None:
        settings = get_settings()
        configure_logging(settings.log_level)
        services = build_services(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if isinstance(services.session_cache, InMemorySessionSpanCache):
            services.session_cache.start(services.settings.session_sweep_interval_seconds)
        try:
            yield
        finally:
            services.session_cache.close()
            services.telemetry.flush()

    app = FastAPI(title="Support Agent", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.services = services

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "tracing_enabled": services.settings.tracing_enabled,
            "providers": [p.value for p in available_providers(services.settings)],
            "retrieval_mode": services.orchestrator.config.retrieval_mode,
        }

    @app.post("/widget/{slug}/chat")
    def widget_chat(slug: str, request: ChatRequest) -> Response:
        try:
            tenant = services.tenants.get_by_slug(slug)
            if tenant is None:
                return JSONResponse({"error": "Tenant not found"}, status_code=404)
            if not tenant.widget_enabled:
                return JSONResponse({"error": "Widget is disabled"}, status_code=403)

            stream = services.orchestrator.stream_turn(
                tenant,
                request.messages,
                session_id=request.session_id,
                span_name="chat-turn",
            )
        except ConfigurationError as exc:
            logger.error("Chat unavailable for tenant slug %s: %s", slug, exc)
            return JSONResponse(
                {"error": "Chat is not available for this tenant"}, status_code=422
            )
        except Exception:
            logger.exception("Chat error for tenant slug %s", slug)
            return JSONResponse({"error": "Failed to process chat"}, status_code=500)

        return stream.to_streaming_response()

    return app


app = create_app()
