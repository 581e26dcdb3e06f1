"""Telemetry spans for chat turns.

Tracing is an operational aid: with no backend credentials every call is a
no-op and chat keeps working.
"""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from support_agent.config import Settings

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


class Span(Protocol):
    """One traced unit of work."""

    def log(
        self,
        *,
        input: Any = None,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a partial event to the span."""

    def export(self) -> str:
        """Serialize a handle that can parent spans in later requests."""

    def end(self) -> None:
        """Close the span."""


class Telemetry(Protocol):
    """Structured-logging backend that creates spans."""

    def start_span(
        self,
        name: str,
        *,
        event: dict[str, Any] | None = None,
        parent: str | None = None,
    ) -> Span:
        """Open a span, optionally under a previously exported parent."""

    def update_span(
        self,
        exported: str,
        *,
        input: Any = None,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log onto a span known only by its exported handle."""

    def flush(self) -> None:
        """Deliver buffered events."""


def _event(input: Any, output: Any, metadata: dict[str, Any] | None) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if input is not None:
        payload["input"] = input
    if output is not None:
        payload["output"] = output
    if metadata:
        payload["metadata"] = dict(metadata)
    return payload


class NoopSpan:
    def log(self, *, input: Any = None, output: Any = None, metadata: dict[str, Any] | None = None) -> None:
        return None

    def export(self) -> str:
        return ""

    def end(self) -> None:
        return None


class NoopTelemetry:
    """Used when no tracing backend is configured."""

    def start_span(
        self,
        name: str,
        *,
        event: dict[str, Any] | None = None,
        parent: str | None = None,
    ) -> Span:
        return NoopSpan()

    def update_span(
        self,
        exported: str,
        *,
        input: Any = None,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        return None

    def flush(self) -> None:
        return None


@dataclass(slots=True)
class SpanRecord:
    span_id: str
    name: str
    parent_id: str | None
    started_at: str
    events: list[dict[str, Any]] = field(default_factory=list)
    ended: bool = False

    @property
    def input(self) -> Any:
        return next((e["input"] for e in self.events if "input" in e), None)

    @property
    def output(self) -> Any:
        return next((e["output"] for e in reversed(self.events) if "output" in e), None)

    @property
    def metadata(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for event in self.events:
            merged.update(event.get("metadata", {}))
        return merged


class _RecordedSpan:
    def __init__(self, record: SpanRecord, lock: threading.Lock) -> None:
        self._record = record
        self._lock = lock

    def log(self, *, input: Any = None, output: Any = None, metadata: dict[str, Any] | None = None) -> None:
        payload = _event(input, output, metadata)
        if payload:
            with self._lock:
                self._record.events.append(payload)

    def export(self) -> str:
        return self._record.span_id

    def end(self) -> None:
        with self._lock:
            self._record.ended = True


class InMemoryTelemetry:
    """Keeps spans and their ordered events in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, SpanRecord] = {}
        self._lock = threading.Lock()

    def start_span(
        self,
        name: str,
        *,
        event: dict[str, Any] | None = None,
        parent: str | None = None,
    ) -> Span:
        record = SpanRecord(
            span_id=uuid.uuid4().hex,
            name=name,
            parent_id=parent or None,
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._records[record.span_id] = record
        span = _RecordedSpan(record, self._lock)
        if event:
            span.log(**event)
        return span

    def update_span(
        self,
        exported: str,
        *,
        input: Any = None,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            record = self._records.get(exported)
        if record is None:
            logger.warning("Cannot update unknown span %s", exported)
            return
        _RecordedSpan(record, self._lock).log(input=input, output=output, metadata=metadata)

    def flush(self) -> None:
        return None

    def get(self, span_id: str) -> SpanRecord:
        with self._lock:
            record = self._records.get(span_id)
        if record is None:
            raise KeyError(f"Span not found: {span_id}")
        return record

    def list_recent(self, limit: int = 20, *, name: str | None = None) -> list[SpanRecord]:
        with self._lock:
            snapshot = list(self._records.values())
        records = [r for r in snapshot if name is None or r.name == name]
        return records[-limit:]


class _LangfuseSpan:
    def __init__(self, observation: Any, *, is_trace: bool) -> None:
        self._observation = observation
        self._is_trace = is_trace

    def log(self, *, input: Any = None, output: Any = None, metadata: dict[str, Any] | None = None) -> None:
        payload = _event(input, output, metadata)
        if payload:
            self._observation.update(**payload)

    def export(self) -> str:
        return f"{self._observation.trace_id}:{self._observation.id}"

    def end(self) -> None:
        # Traces have no end time in Langfuse; only observations do.
        if not self._is_trace:
            self._observation.end()


class LangfuseTelemetry:
    """Langfuse backend.

    A span without a parent becomes a Langfuse trace tagged with the session
    id; a span with a parent becomes an observation inside the parent's trace.
    Exported handles have the form `<trace_id>:<observation_id>`.
    """

    def __init__(self, client: Any, *, project: str) -> None:
        self._client = client
        self._project = project

    @classmethod
    def from_credentials(
        cls,
        *,
        public_key: str,
        secret_key: str,
        host: str,
        project: str,
    ) -> "LangfuseTelemetry":
        from langfuse import Langfuse

        return cls(
            Langfuse(public_key=public_key, secret_key=secret_key, host=host),
            project=project,
        )

    def start_span(
        self,
        name: str,
        *,
        event: dict[str, Any] | None = None,
        parent: str | None = None,
    ) -> Span:
        event = event or {}
        metadata = dict(event.get("metadata") or {})
        if parent:
            trace_id, parent_id = _parse_handle(parent)
            observation = self._client.span(
                trace_id=trace_id,
                parent_observation_id=parent_id,
                name=name,
                input=event.get("input"),
                metadata=metadata,
            )
            return _LangfuseSpan(observation, is_trace=False)

        trace = self._client.trace(
            name=name,
            session_id=metadata.get("sessionId"),
            input=event.get("input"),
            metadata=metadata,
            tags=[self._project],
        )
        return _LangfuseSpan(trace, is_trace=True)

    def update_span(
        self,
        exported: str,
        *,
        input: Any = None,
        output: Any = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        trace_id, observation_id = _parse_handle(exported)
        payload = _event(input, output, metadata)
        if observation_id is None:
            self._client.trace(id=trace_id, **payload)
        else:
            self._client.span(id=observation_id, trace_id=trace_id, **payload)

    def flush(self) -> None:
        self._client.flush()


def _parse_handle(exported: str) -> tuple[str, str | None]:
    trace_id, _, observation_id = exported.partition(":")
    if not observation_id or observation_id == trace_id:
        return trace_id, None
    return trace_id, observation_id


def create_telemetry(settings: Settings) -> Telemetry:
    if not settings.tracing_enabled:
        logger.info("Langfuse credentials not set; tracing disabled")
        return NoopTelemetry()
    return LangfuseTelemetry.from_credentials(
        public_key=settings.langfuse_public_key or "",
        secret_key=settings.langfuse_secret_key or "",
        host=settings.langfuse_host,
        project=settings.telemetry_project,
    )


class Timer:
    """Wall-clock timer for a turn; usable as a context manager or started
    explicitly when the timed work outlives one block (streaming)."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def start(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def stop(self) -> float:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
        return self.elapsed_ms

    def __enter__(self) -> "Timer":
        return self.start()

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.stop()


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
