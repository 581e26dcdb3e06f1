"""Error taxonomy for the chat-turn pipeline."""

from __future__ import annotations

from typing import Any


class SupportAgentError(Exception):
    """Base class for errors raised by the support agent."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SupportAgentError):
    """A credential is missing or the tenant configuration is malformed.

    Fatal to the turn and never retried.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if provider:
            details["provider"] = provider
        if field:
            details["field"] = field
        self.provider = provider
        self.field = field
        super().__init__(message, details)


class RetrievalDegraded(SupportAgentError):
    """The knowledge index could not be queried.

    Never surfaced to callers; the retriever answers with empty context.
    """


class ToolExecutionError(SupportAgentError):
    """A bound tool failed while the model was generating."""

    def __init__(self, tool_name: str, message: str) -> None:
        self.tool_name = tool_name
        super().__init__(message, {"tool": tool_name})
