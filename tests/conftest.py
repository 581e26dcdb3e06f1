import json
import re
from collections.abc import Callable

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage

from support_agent.agent.orchestrator import ChatTurnOrchestrator
from support_agent.agent.providers import ModelHandle
from support_agent.config import AgentConfig, RetrievalConfig, Settings
from support_agent.ingest.embedder import Embedder
from support_agent.models import ModelProvider, TenantConfig
from support_agent.obs.tracing import InMemoryTelemetry
from support_agent.retrieval.retriever import ContextRetriever
from support_agent.retrieval.vector_store import InMemoryChunkStore
from support_agent.types import KnowledgeChunk


class ScriptedChatModel:
    """Replays scripted AI messages and records every prompt it receives."""

    def __init__(self, responses: list[AIMessage]) -> None:
        self.responses = list(responses)
        self.calls: list[list[BaseMessage]] = []
        self.bound_tools: list | None = None

    def bind_tools(self, tools: list) -> "ScriptedChatModel":
        self.bound_tools = list(tools)
        return self

    def invoke(self, messages: list[BaseMessage]) -> AIMessage:
        self.calls.append(list(messages))
        return self._next()

    def stream(self, messages: list[BaseMessage]):
        self.calls.append(list(messages))
        message = self._next()
        if message.tool_calls:
            yield AIMessageChunk(
                content=message.content,
                tool_call_chunks=[
                    {
                        "name": call["name"],
                        "args": json.dumps(call["args"]),
                        "id": call["id"],
                        "index": index,
                    }
                    for index, call in enumerate(message.tool_calls)
                ],
            )
            return
        for piece in re.findall(r"\S+\s*", str(message.content)):
            yield AIMessageChunk(content=piece)

    @property
    def system_prompts(self) -> list[str]:
        return [str(call[0].content) for call in self.calls]

    def _next(self) -> AIMessage:
        if not self.responses:
            raise AssertionError("ScriptedChatModel ran out of responses")
        return self.responses.pop(0)


class FakeEmbedder(Embedder):
    """Maps known texts to fixed vectors and counts calls."""

    def __init__(self, vectors: dict[str, list[float]], default: list[float] | None = None) -> None:
        self.vectors = vectors
        self.default = default or [0.0, 0.0, 1.0]
        self.calls = 0

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self.vectors.get(text, self.default) for text in texts]

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        return self.vectors.get(text, self.default)


def tool_call(query: str, call_id: str = "call_1") -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": "search_knowledge_base", "args": {"query": query}, "id": call_id}],
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="sk-platform",
        anthropic_api_key=None,
        google_api_key=None,
        langfuse_public_key=None,
        langfuse_secret_key=None,
        redis_url=None,
        database_url=None,
    )


@pytest.fixture
def bare_settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key=None,
        anthropic_api_key=None,
        google_api_key=None,
        langfuse_public_key=None,
        langfuse_secret_key=None,
        redis_url=None,
        database_url=None,
    )


@pytest.fixture
def tenant() -> TenantConfig:
    return TenantConfig(
        id="tenant-a",
        slug="acme",
        name="Acme",
        instructions="You are Acme's support assistant.",
        model_provider=ModelProvider.OPENAI,
        model_name="gpt-4o-mini",
        temperature=0.2,
        welcome_message="Hi! Ask me anything about Acme.",
    )


@pytest.fixture
def chunk_store() -> InMemoryChunkStore:
    return InMemoryChunkStore()


@pytest.fixture
def telemetry() -> InMemoryTelemetry:
    return InMemoryTelemetry()


@pytest.fixture
def add_chunk(chunk_store: InMemoryChunkStore) -> Callable[..., KnowledgeChunk]:
    counter = {"n": 0}

    def _add(tenant_id: str, content: str, embedding: list[float], title: str | None = None) -> KnowledgeChunk:
        counter["n"] += 1
        chunk = KnowledgeChunk(
            chunk_id=f"chunk-{counter['n']}",
            document_id=f"doc-{tenant_id}",
            tenant_id=tenant_id,
            content=content,
            embedding=embedding,
            chunk_index=counter["n"] - 1,
            source_title=title,
        )
        chunk_store.add([chunk])
        return chunk

    return _add


@pytest.fixture
def make_orchestrator(
    settings: Settings,
    chunk_store: InMemoryChunkStore,
    telemetry: InMemoryTelemetry,
) -> Callable[..., tuple[ChatTurnOrchestrator, ScriptedChatModel]]:
    def _make(
        responses: list[AIMessage],
        *,
        embedder: Embedder | None = None,
        mode: str = "inline",
        session_cache=None,
        max_tool_steps: int = 5,
        orchestrator_settings: Settings | None = None,
    ) -> tuple[ChatTurnOrchestrator, ScriptedChatModel]:
        model = ScriptedChatModel(responses)
        embedder = embedder or FakeEmbedder({})
        retriever = ContextRetriever(
            chunk_store,
            lambda _key: embedder,
            RetrievalConfig(top_k=3, min_similarity=0.5),
        )
        orchestrator = ChatTurnOrchestrator(
            retriever=retriever,
            settings=orchestrator_settings or settings,
            telemetry=telemetry,
            session_cache=session_cache,
            config=AgentConfig(retrieval_mode=mode, max_tool_steps=max_tool_steps),
            model_resolver=lambda t: ModelHandle(
                provider=t.model_provider,
                model_name=t.model_name,
                temperature=t.temperature,
                llm=model,
            ),
        )
        return orchestrator, model

    return _make


@pytest.fixture
def scripted() -> Callable[[list[AIMessage]], ScriptedChatModel]:
    return ScriptedChatModel


@pytest.fixture
def fake_embedder() -> type[FakeEmbedder]:
    return FakeEmbedder


@pytest.fixture
def make_tool_call() -> Callable[..., AIMessage]:
    return tool_call
