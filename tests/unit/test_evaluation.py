import pytest
from langchain_core.messages import AIMessage

from support_agent.evaluation.harness import (
    EvalExample,
    EvaluationRunner,
    OverlapScorer,
    make_chat_task,
)


def test_overlap_scorer_ignores_case_and_punctuation() -> None:
    scorer = OverlapScorer()

    assert scorer.score("Go to Settings, then Security!", "go to settings then security") == 1.0
    assert scorer.score("Open Settings", "open settings security") == pytest.approx(2 / 3)
    assert scorer.score("", "") == 1.0
    assert scorer.score("something", "") == 0.0


def test_failing_example_is_recorded_and_run_continues() -> None:
    def _task(history: list[dict]) -> str:
        question = history[-1]["content"]
        if question == "boom":
            raise RuntimeError("provider down")
        return question.upper()

    examples = [
        EvalExample("ok-1", [{"role": "user", "content": "a b"}], expected="A B"),
        EvalExample("bad", [{"role": "user", "content": "boom"}], expected="x"),
        EvalExample("ok-2", [{"role": "user", "content": "c"}]),
    ]
    progress = []

    summary = EvaluationRunner(_task, max_concurrency=2).run(
        examples, on_progress=lambda done, total: progress.append((done, total))
    )

    assert [r.example_id for r in summary.results] == ["ok-1", "bad", "ok-2"]
    assert summary.succeeded == 2
    assert summary.failed == 1
    assert summary.results[1].error == "RuntimeError: provider down"
    assert summary.results[2].score is None
    assert summary.mean_score == 1.0
    assert progress[-1] == (3, 3)


def test_runner_requires_positive_concurrency() -> None:
    with pytest.raises(ValueError):
        EvaluationRunner(lambda history: "", max_concurrency=0)


def test_chat_task_runs_a_traced_turn(make_orchestrator, tenant, telemetry) -> None:
    orchestrator, _ = make_orchestrator([AIMessage(content="Use the reset link.")])
    task = make_chat_task(orchestrator, tenant)

    output = task([{"role": "user", "content": "How do I reset my password?"}])

    assert output == "Use the reset link."
    (span,) = telemetry.list_recent(name="eval-task")
    assert span.output == "Use the reset link."


def test_concurrent_chat_tasks_keep_turns_separate(make_orchestrator, tenant, telemetry) -> None:
    orchestrator, model = make_orchestrator([])

    def _echo(messages) -> AIMessage:
        return AIMessage(content=f"echo: {messages[-1].content}")

    model.invoke = _echo
    examples = [
        EvalExample(
            f"ex-{n}",
            [{"role": "user", "content": f"question {n}"}],
            expected=f"echo question {n}",
        )
        for n in range(20)
    ]

    runner = EvaluationRunner(make_chat_task(orchestrator, tenant), max_concurrency=10)
    summary = runner.run(examples)

    assert summary.failed == 0
    assert [r.output for r in summary.results] == [f"echo: question {n}" for n in range(20)]
    spans = telemetry.list_recent(limit=100, name="eval-task")
    assert len(spans) == 20
    for span in spans:
        inputs = [e["input"] for e in span.events if "input" in e]
        outputs = [e["output"] for e in span.events if "output" in e]
        assert len(inputs) == 1
        assert outputs == [f"echo: {inputs[0]}"]
        assert span.ended
