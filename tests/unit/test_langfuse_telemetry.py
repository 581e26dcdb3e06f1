import itertools

from support_agent.obs.tracing import LangfuseTelemetry


class FakeObservation:
    def __init__(self, trace_id: str, observation_id: str) -> None:
        self.trace_id = trace_id
        self.id = observation_id
        self.updates: list[dict] = []
        self.ended = False

    def update(self, **kwargs) -> None:
        self.updates.append(kwargs)

    def end(self) -> None:
        self.ended = True


class FakeLangfuse:
    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.observations: list[FakeObservation] = []
        self.flushed = False
        self._ids = itertools.count(1)

    def trace(self, **kwargs) -> FakeObservation:
        self.calls.append(("trace", kwargs))
        trace_id = kwargs.get("id") or f"trace-{next(self._ids)}"
        return self._record(FakeObservation(trace_id, trace_id))

    def span(self, **kwargs) -> FakeObservation:
        self.calls.append(("span", kwargs))
        observation_id = kwargs.get("id") or f"obs-{next(self._ids)}"
        return self._record(FakeObservation(kwargs["trace_id"], observation_id))

    def flush(self) -> None:
        self.flushed = True

    def _record(self, observation: FakeObservation) -> FakeObservation:
        self.observations.append(observation)
        return observation


def test_root_span_becomes_session_trace() -> None:
    client = FakeLangfuse()
    telemetry = LangfuseTelemetry(client, project="support")

    span = telemetry.start_span(
        "conversation", event={"input": "hi", "metadata": {"sessionId": "s-1"}}
    )
    span.end()

    kind, kwargs = client.calls[0]
    assert kind == "trace"
    assert kwargs["session_id"] == "s-1"
    assert kwargs["input"] == "hi"
    assert kwargs["tags"] == ["support"]
    assert span.export() == "trace-1:trace-1"


def test_child_span_nests_under_exported_parent() -> None:
    client = FakeLangfuse()
    telemetry = LangfuseTelemetry(client, project="support")
    root = telemetry.start_span("conversation", event={"metadata": {"sessionId": "s-1"}})

    child = telemetry.start_span("chat-turn", event={"input": "q"}, parent=root.export())
    child.log(output="a", metadata={"toolCalls": 0})
    child.end()

    kind, kwargs = client.calls[1]
    assert kind == "span"
    assert kwargs["trace_id"] == "trace-1"
    assert kwargs["parent_observation_id"] is None
    assert child.export() == "trace-1:obs-2"
    assert client.observations[1].updates == [{"output": "a", "metadata": {"toolCalls": 0}}]
    assert client.observations[1].ended

    grandchild = telemetry.start_span("tool", parent=child.export())
    assert grandchild.export().startswith("trace-1:")
    assert client.calls[2][1]["parent_observation_id"] == "obs-2"


def test_root_end_does_not_close_trace() -> None:
    client = FakeLangfuse()
    telemetry = LangfuseTelemetry(client, project="support")

    root = telemetry.start_span("conversation")
    root.end()

    assert not client.observations[0].ended


def test_update_span_upserts_trace_or_observation() -> None:
    client = FakeLangfuse()
    telemetry = LangfuseTelemetry(client, project="support")

    telemetry.update_span("trace-9:trace-9", input="q", output="a")
    telemetry.update_span("trace-9:obs-3", output="b")
    telemetry.flush()

    assert client.calls == [
        ("trace", {"id": "trace-9", "input": "q", "output": "a"}),
        ("span", {"id": "obs-3", "trace_id": "trace-9", "output": "b"}),
    ]
    assert client.flushed
