"""Validated inputs handed to the chat-turn pipeline by collaborators."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from support_agent.errors import ConfigurationError


class ModelProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class TenantConfig(BaseModel):
    """Snapshot of one tenant's bot configuration, read-only during a turn."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    id: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    name: str = ""
    instructions: str = "You are a helpful customer support assistant."
    model_provider: ModelProvider = ModelProvider.OPENAI
    model_name: str = Field(default="gpt-4o-mini", min_length=1)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    welcome_message: str = "Hi! How can I help you today?"
    openai_api_key: str | None = Field(default=None, repr=False)
    anthropic_api_key: str | None = Field(default=None, repr=False)
    google_api_key: str | None = Field(default=None, repr=False)
    widget_enabled: bool = True

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "TenantConfig":
        """Build a config from a stored tenant row.

        Raises:
            ConfigurationError: if the record fails validation.
        """
        try:
            return cls.model_validate(record)
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise ConfigurationError(
                "Tenant configuration is invalid.",
                details={"tenant_id": record.get("id"), "invalid_fields": fields},
            ) from exc

    def key_for(self, provider: ModelProvider) -> str | None:
        """Return the tenant-level credential for `provider`, if any."""
        return getattr(self, f"{provider.value}_api_key") or None


class ChatMessage(BaseModel):
    """One turn of conversation history."""

    role: Literal["user", "assistant", "system"]
    content: str | list[dict[str, Any]] | None = None

    @property
    def text(self) -> str:
        return content_text(self.content)


def content_text(content: Any) -> str:
    """Plain text of string content or of the text parts of a part list.

    A part without a `type` counts as text.
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict) and item.get("type", "text") == "text" and "text" in item:
            parts.append(str(item["text"]))
    return "".join(parts)
