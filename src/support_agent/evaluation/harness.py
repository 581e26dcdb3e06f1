"""Offline evaluation of a tenant's bot against saved conversations."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from support_agent.agent.orchestrator import ChatTurnOrchestrator
from support_agent.models import TenantConfig

logger = logging.getLogger(__name__)

ConversationHistory = list[dict[str, Any]]
Task = Callable[[ConversationHistory], str]

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class EvalExample:
    example_id: str
    input: ConversationHistory
    expected: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EvalResult:
    example_id: str
    output: str | None
    score: float | None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class EvalSummary:
    results: list[EvalResult]

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.succeeded)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def mean_score(self) -> float | None:
        scores = [r.score for r in self.results if r.succeeded and r.score is not None]
        if not scores:
            return None
        return sum(scores) / len(scores)


class OverlapScorer:
    """Deterministic factuality proxy.

    Scores the share of the expected answer's tokens that the output
    reproduces. Punctuation-only tokens are ignored. An empty expectation
    scores 1.0 when the output is empty too, else 0.0.
    """

    def score(self, output: str, expected: str) -> float:
        expected_tokens = set(self._normalize(expected))
        output_tokens = set(self._normalize(output))
        if not expected_tokens:
            return 1.0 if not output_tokens else 0.0
        return len(expected_tokens & output_tokens) / len(expected_tokens)

    @staticmethod
    def _normalize(text: str) -> list[str]:
        return [
            token.lower()
            for token in _TOKEN_PATTERN.findall(text)
            if any(ch.isalnum() for ch in token)
        ]


def make_chat_task(
    orchestrator: ChatTurnOrchestrator,
    tenant: TenantConfig,
    *,
    span_name: str = "eval-task",
) -> Task:
    """Adapt the orchestrator to `task(conversation_history) -> str`."""

    def _task(history: ConversationHistory) -> str:
        return orchestrator.complete_turn(tenant, history, span_name=span_name)

    return _task


class EvaluationRunner:
    """Runs a task over dataset examples with bounded concurrency.

    A failing example is recorded and the run continues with the rest.
    """

    def __init__(
        self,
        task: Task,
        *,
        scorer: OverlapScorer | None = None,
        max_concurrency: int = 10,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.task = task
        self.scorer = scorer or OverlapScorer()
        self.max_concurrency = max_concurrency

    def run(
        self,
        examples: Sequence[EvalExample],
        *,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> EvalSummary:
        total = len(examples)
        results: list[EvalResult] = []
        with ThreadPoolExecutor(max_workers=self.max_concurrency) as pool:
            for done, result in enumerate(pool.map(self._run_one, examples), start=1):
                results.append(result)
                if on_progress is not None:
                    on_progress(done, total)
        summary = EvalSummary(results=results)
        logger.info(
            "Evaluation finished: %d succeeded, %d failed", summary.succeeded, summary.failed
        )
        return summary

    def _run_one(self, example: EvalExample) -> EvalResult:
        try:
            output = self.task(example.input)
        except Exception as exc:
            logger.warning(
                "Evaluation example %s failed: %s",
                example.example_id,
                type(exc).__name__,
                exc_info=True,
            )
            return EvalResult(
                example_id=example.example_id,
                output=None,
                score=None,
                error=f"{type(exc).__name__}: {exc}",
            )
        score = None if example.expected is None else self.scorer.score(output, example.expected)
        return EvalResult(example_id=example.example_id, output=output, score=score)
