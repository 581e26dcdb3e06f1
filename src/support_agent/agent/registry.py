"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field

from support_agent.errors import ToolExecutionError
from support_agent.types import ToolTrace


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs and exports LangChain-compatible tool objects.

    A registry is built per turn, so its observer never sees another turn's
    calls.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._observer: Callable[[ToolTrace], None] | None = None

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def set_observer(self, observer: Callable[[ToolTrace], None] | None) -> None:
        """Set an optional callback invoked after each tool execution."""
        self._observer = observer

    def execute(self, name: str, payload: dict[str, Any]) -> str:
        """Run a tool by name.

        Raises:
            ToolExecutionError: unknown tool, invalid arguments, or a failing
                handler.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise ToolExecutionError(name, f"Unknown tool: {name}")
        return self._execute_spec(spec, payload)

    def as_langchain_tools(self) -> list[StructuredTool]:
        return [
            StructuredTool.from_function(
                name=spec.name,
                description=spec.description,
                args_schema=spec.args_schema,
                func=self._build_function(spec),
            )
            for spec in self._tools.values()
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_spec(spec, kwargs)

        return _callable

    def _execute_spec(self, spec: ToolSpec, payload: dict[str, Any]) -> str:
        start = perf_counter()
        try:
            output = spec.invoke(payload)
        except Exception as exc:
            self._notify(spec.name, payload, f"{type(exc).__name__}: {exc}", start, failed=True)
            raise ToolExecutionError(spec.name, f"Tool {spec.name} failed") from exc

        self._notify(spec.name, payload, output, start)
        return output

    def _notify(
        self,
        name: str,
        payload: dict[str, Any],
        output: str,
        start: float,
        *,
        failed: bool = False,
    ) -> None:
        if self._observer is None:
            return
        self._observer(
            ToolTrace(
                name=name,
                input_payload=payload,
                output_preview=output[:320],
                latency_ms=(perf_counter() - start) * 1000.0,
                failed=failed,
            )
        )
