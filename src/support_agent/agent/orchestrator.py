"""Chat-turn orchestration: retrieval, prompting, generation and tracing."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from fastapi.responses import StreamingResponse
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from support_agent.agent.prompts import build_system_prompt
from support_agent.agent.providers import ModelHandle, resolve_model
from support_agent.agent.registry import ToolRegistry
from support_agent.agent.tools import KNOWLEDGE_TOOL, NO_CONTEXT_RESULT, build_knowledge_tool
from support_agent.config import AgentConfig, Settings
from support_agent.errors import ToolExecutionError
from support_agent.ingest.embedder import resolve_embedding_key
from support_agent.models import ChatMessage, TenantConfig, content_text
from support_agent.obs.session_cache import SessionSpanCache, resolve_session_parent
from support_agent.obs.tracing import NoopTelemetry, Span, Telemetry, Timer, estimate_token_count
from support_agent.retrieval.retriever import ContextRetriever
from support_agent.types import RetrievalResult, ToolTrace

logger = logging.getLogger(__name__)

T = TypeVar("T")
ModelResolver = Callable[[TenantConfig], ModelHandle]
MessageLike = ChatMessage | dict[str, Any]

STREAM_ERROR_MESSAGE = "Failed to process message"
# Joins the text of consecutive model steps in tool mode.
STEP_SEPARATOR = "\n\n"


class TurnState(str, Enum):
    OPENED = "opened"
    CONTEXT_RESOLVED = "context_resolved"
    PROMPT_ASSEMBLED = "prompt_assembled"
    MODEL_INVOKED = "model_invoked"
    TOOL_CALL_REQUESTED = "tool_call_requested"
    TOOL_RESULT = "tool_result"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.OPENED: frozenset({TurnState.CONTEXT_RESOLVED}),
    TurnState.CONTEXT_RESOLVED: frozenset({TurnState.PROMPT_ASSEMBLED}),
    TurnState.PROMPT_ASSEMBLED: frozenset({TurnState.MODEL_INVOKED}),
    TurnState.MODEL_INVOKED: frozenset({TurnState.TOOL_CALL_REQUESTED, TurnState.COMPLETED}),
    TurnState.TOOL_CALL_REQUESTED: frozenset({TurnState.TOOL_RESULT}),
    TurnState.TOOL_RESULT: frozenset({TurnState.MODEL_INVOKED}),
    TurnState.COMPLETED: frozenset(),
    TurnState.FAILED: frozenset(),
}


@dataclass(slots=True)
class _Turn:
    """Mutable state of one turn. Never shared between turns."""

    tenant: TenantConfig
    history: list[BaseMessage]
    user_input: str
    span: Span
    parent: str | None
    timer: Timer
    mode: str
    system_prompt: str = ""
    retrieval: RetrievalResult | None = None
    tools: ToolRegistry | None = None
    handle: ModelHandle | None = None
    tool_traces: list[ToolTrace] = field(default_factory=list)
    states: list[TurnState] = field(default_factory=lambda: [TurnState.OPENED])

    @property
    def state(self) -> TurnState:
        return self.states[-1]

    def advance(self, state: TurnState) -> None:
        current = self.state
        if state is TurnState.FAILED and _TRANSITIONS[current]:
            self.states.append(state)
            return
        if state not in _TRANSITIONS[current]:
            raise RuntimeError(f"Invalid turn transition {current.value} -> {state.value}")
        self.states.append(state)

    @property
    def context_count(self) -> int:
        if self.retrieval is not None:
            return len(self.retrieval)
        return sum(
            1
            for trace in self.tool_traces
            if not trace.failed and trace.output_preview != NO_CONTEXT_RESULT
        )


class StreamHandle:
    """Lazily generated assistant reply.

    Iterating yields text deltas. `on_finish` fires once with the full text
    only if the stream is consumed to the end; an abandoned stream (client
    disconnect) releases the model stream and logs nothing.
    """

    def __init__(self, chunks: Iterator[str], on_finish: Callable[[str], None]) -> None:
        self._chunks = chunks
        self._on_finish = on_finish
        self._consumed = False
        self.text: str | None = None

    @property
    def finished(self) -> bool:
        return self.text is not None

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("stream already consumed")
        self._consumed = True
        parts: list[str] = []
        try:
            for piece in self._chunks:
                parts.append(piece)
                yield piece
        finally:
            close = getattr(self._chunks, "close", None)
            if callable(close):
                close()
        self.text = "".join(parts)
        self._on_finish(self.text)

    def read(self) -> str:
        """Consume the whole stream and return the final text."""
        for _ in self:
            pass
        return self.text or ""

    def to_streaming_response(self, headers: dict[str, str] | None = None) -> StreamingResponse:
        """Wrap the stream as server-sent events.

        Each delta is a `{"type": "text-delta", "delta": ...}` event followed
        by a final `finish` event, or an `error` event with a generic message
        if generation fails mid-stream.
        """
        return StreamingResponse(
            self._sse_events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", **(headers or {})},
        )

    def _sse_events(self) -> Iterator[str]:
        try:
            for piece in self:
                yield _sse({"type": "text-delta", "delta": piece})
        except Exception:
            logger.exception("Chat stream failed")
            yield _sse({"type": "error", "error": STREAM_ERROR_MESSAGE})
            return
        yield _sse({"type": "finish"})


class ChatTurnOrchestrator:
    """Runs one chat turn for a tenant.

    `stream_turn` (live widget) and `complete_turn` (evaluation harness)
    share `_execute_turn`: open span, resolve credential, ground the prompt
    (inline context or knowledge tool), resolve the model, generate, log the
    output. Configuration errors and model-provider errors propagate to the
    caller unchanged; nothing is retried here.
    """

    def __init__(
        self,
        *,
        retriever: ContextRetriever,
        settings: Settings,
        telemetry: Telemetry | None = None,
        session_cache: SessionSpanCache | None = None,
        config: AgentConfig | None = None,
        model_resolver: ModelResolver | None = None,
    ) -> None:
        self.retriever = retriever
        self.settings = settings
        self.telemetry = telemetry or NoopTelemetry()
        self.session_cache = session_cache
        self.config = config or settings.agent
        self.model_resolver = model_resolver or self._default_model_resolver

    def stream_turn(
        self,
        tenant: TenantConfig,
        messages: Sequence[MessageLike],
        *,
        session_id: str | None = None,
        span_name: str | None = None,
    ) -> StreamHandle:
        return self._execute_turn(
            tenant,
            messages,
            session_id=session_id,
            span_name=span_name,
            runner=self._start_stream,
        )

    def complete_turn(
        self,
        tenant: TenantConfig,
        messages: Sequence[MessageLike],
        *,
        session_id: str | None = None,
        span_name: str | None = None,
    ) -> str:
        return self._execute_turn(
            tenant,
            messages,
            session_id=session_id,
            span_name=span_name,
            runner=self._run_blocking,
        )

    def _execute_turn(
        self,
        tenant: TenantConfig,
        messages: Sequence[MessageLike],
        *,
        session_id: str | None,
        span_name: str | None,
        runner: Callable[[_Turn], T],
    ) -> T:
        history = [ChatMessage.model_validate(m) if isinstance(m, dict) else m for m in messages]
        user_input = _last_user_text(history)
        metadata = {
            "sessionId": session_id or f"session-{tenant.id}-{int(time.time() * 1000)}",
            "tenantId": tenant.id,
            "tenantSlug": tenant.slug,
            "modelProvider": tenant.model_provider.value,
            "modelName": tenant.model_name,
        }
        parent = self._session_parent(session_id, metadata) if session_id else None

        span = self.telemetry.start_span(
            span_name or self.config.default_span_name,
            event={"input": user_input, "metadata": metadata},
            parent=parent,
        )
        turn = _Turn(
            tenant=tenant,
            history=[_to_langchain(m) for m in history],
            user_input=user_input,
            span=span,
            parent=parent,
            timer=Timer().start(),
            mode=self.config.retrieval_mode,
        )

        try:
            credential = resolve_embedding_key(tenant.openai_api_key, self.settings)
            self._ground(turn, credential)
            turn.handle = self.model_resolver(tenant)
            return runner(turn)
        except Exception as exc:
            self._fail(turn, exc)
            raise

    def _ground(self, turn: _Turn, credential: str) -> None:
        tenant = turn.tenant
        if turn.mode == "tool":
            registry = ToolRegistry()
            registry.register(
                build_knowledge_tool(self.retriever, tenant_id=tenant.id, credential=credential)
            )
            registry.set_observer(turn.tool_traces.append)
            turn.tools = registry
            grounding: Any = KNOWLEDGE_TOOL
        else:
            turn.retrieval = self.retriever.retrieve(tenant.id, turn.user_input, credential)
            grounding = turn.retrieval
        turn.advance(TurnState.CONTEXT_RESOLVED)

        turn.system_prompt = build_system_prompt(
            tenant.instructions, grounding, tenant.welcome_message
        )
        turn.advance(TurnState.PROMPT_ASSEMBLED)

    def _run_blocking(self, turn: _Turn) -> str:
        llm, conversation, budget = self._prepare_generation(turn)
        parts: list[str] = []
        for step in range(budget):
            turn.advance(TurnState.MODEL_INVOKED)
            response = llm.invoke(conversation)
            step_text = message_text(response)
            if step_text:
                parts.append(step_text)
            calls = list(getattr(response, "tool_calls", None) or [])
            if not self._should_call_tools(turn, calls, step, budget):
                break
            conversation.append(response)
            conversation.extend(self._run_tools(turn, calls))
        text = STEP_SEPARATOR.join(parts)
        self._finish(turn, text)
        return text

    def _start_stream(self, turn: _Turn) -> StreamHandle:
        return StreamHandle(
            self._guarded_stream(turn),
            on_finish=lambda text: self._finish(turn, text),
        )

    def _guarded_stream(self, turn: _Turn) -> Iterator[str]:
        try:
            yield from self._stream_steps(turn)
        except Exception as exc:
            self._fail(turn, exc)
            raise

    def _stream_steps(self, turn: _Turn) -> Iterator[str]:
        llm, conversation, budget = self._prepare_generation(turn)
        emitted = False
        for step in range(budget):
            turn.advance(TurnState.MODEL_INVOKED)
            gathered: Any = None
            step_has_text = False
            stream = llm.stream(conversation)
            try:
                for chunk in stream:
                    piece = message_text(chunk)
                    if piece:
                        if emitted and not step_has_text:
                            yield STEP_SEPARATOR
                        step_has_text = emitted = True
                        yield piece
                    gathered = chunk if gathered is None else gathered + chunk
            finally:
                close = getattr(stream, "close", None)
                if callable(close):
                    close()

            calls = list(getattr(gathered, "tool_calls", None) or [])
            if not self._should_call_tools(turn, calls, step, budget):
                return
            conversation.append(gathered)
            conversation.extend(self._run_tools(turn, calls))

    def _prepare_generation(self, turn: _Turn) -> tuple[Any, list[BaseMessage], int]:
        assert turn.handle is not None
        llm = turn.handle.llm
        budget = 1
        if turn.tools is not None:
            llm = llm.bind_tools(turn.tools.as_langchain_tools())
            budget = self.config.max_tool_steps
        conversation: list[BaseMessage] = [SystemMessage(content=turn.system_prompt), *turn.history]
        return llm, conversation, budget

    def _should_call_tools(
        self, turn: _Turn, calls: list[dict[str, Any]], step: int, budget: int
    ) -> bool:
        if not calls or turn.tools is None:
            return False
        if step + 1 >= budget:
            logger.warning(
                "Tool step limit (%d) reached for tenant %s; returning last model output",
                budget,
                turn.tenant.id,
            )
            return False
        return True

    def _run_tools(self, turn: _Turn, calls: list[dict[str, Any]]) -> list[ToolMessage]:
        assert turn.tools is not None
        turn.advance(TurnState.TOOL_CALL_REQUESTED)
        results: list[ToolMessage] = []
        for call in calls:
            name = str(call.get("name", ""))
            try:
                content = turn.tools.execute(name, dict(call.get("args") or {}))
            except ToolExecutionError:
                logger.warning(
                    "Tool %s failed for tenant %s; continuing without context",
                    name,
                    turn.tenant.id,
                    exc_info=True,
                )
                content = NO_CONTEXT_RESULT
            results.append(
                ToolMessage(content=content, tool_call_id=str(call.get("id") or ""), name=name)
            )
        turn.advance(TurnState.TOOL_RESULT)
        return results

    def _finish(self, turn: _Turn, text: str) -> None:
        turn.advance(TurnState.COMPLETED)
        turn.span.log(
            output=text,
            metadata={
                "hasContext": turn.context_count > 0,
                "contextCount": turn.context_count,
                "retrievalMode": turn.mode,
                "toolCalls": len(turn.tool_traces),
                "latencyMs": round(turn.timer.stop(), 1),
                "inputTokens": estimate_token_count(turn.user_input),
                "outputTokens": estimate_token_count(text),
            },
        )
        turn.span.end()
        if turn.parent:
            self.telemetry.update_span(turn.parent, input=turn.user_input, output=text)

    def _fail(self, turn: _Turn, exc: BaseException) -> None:
        failed_in = turn.state
        if failed_in in (TurnState.COMPLETED, TurnState.FAILED):
            return
        turn.advance(TurnState.FAILED)
        logger.warning(
            "Chat turn failed for tenant %s during %s: %s",
            turn.tenant.id,
            failed_in.value,
            type(exc).__name__,
        )
        turn.span.log(metadata={"error": type(exc).__name__, "failedState": failed_in.value})
        turn.span.end()

    def _session_parent(self, session_id: str, metadata: dict[str, Any]) -> str | None:
        if self.session_cache is None:
            return None
        try:
            return resolve_session_parent(
                self.session_cache,
                self.telemetry,
                session_id,
                metadata={k: v for k, v in metadata.items() if k != "sessionId"},
                ttl_seconds=self.settings.session_ttl_seconds,
            )
        except Exception:
            logger.warning("Session span lookup failed for %s", session_id, exc_info=True)
            return None

    def _default_model_resolver(self, tenant: TenantConfig) -> ModelHandle:
        return resolve_model(
            tenant, self.settings, max_output_tokens=self.config.max_output_tokens
        )


def message_text(message: Any) -> str:
    """Extract plain text from a LangChain message or chunk."""
    return content_text(getattr(message, "content", message))


def _last_user_text(history: Iterable[ChatMessage]) -> str:
    for message in reversed(list(history)):
        if message.role == "user":
            return message.text
    return ""


def _to_langchain(message: ChatMessage) -> BaseMessage:
    content: Any = message.content if message.content is not None else ""
    if message.role == "user":
        return HumanMessage(content=content)
    if message.role == "assistant":
        return AIMessage(content=content)
    return SystemMessage(content=content)


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
