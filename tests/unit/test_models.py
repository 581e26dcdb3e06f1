import pytest

from support_agent.agent.orchestrator import message_text
from support_agent.errors import ConfigurationError
from support_agent.models import ChatMessage, ModelProvider, TenantConfig


def test_tenant_record_with_bad_temperature_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as excinfo:
        TenantConfig.from_record({"id": "t1", "slug": "acme", "temperature": 1.5})

    assert excinfo.value.details["invalid_fields"] == ["temperature"]
    assert excinfo.value.details["tenant_id"] == "t1"


def test_tenant_record_with_unknown_provider_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        TenantConfig.from_record({"id": "t1", "slug": "acme", "model_provider": "mistral"})


def test_key_for_returns_tenant_credential_per_provider(tenant) -> None:
    configured = tenant.model_copy(update={"anthropic_api_key": "ak"})

    assert configured.key_for(ModelProvider.ANTHROPIC) == "ak"
    assert configured.key_for(ModelProvider.GOOGLE) is None


def test_tenant_credentials_hidden_from_repr(tenant) -> None:
    configured = tenant.model_copy(update={"openai_api_key": "sk-secret"})

    assert "sk-secret" not in repr(configured)


def test_chat_message_text_handles_empty_and_part_content() -> None:
    assert ChatMessage(role="assistant").text == ""
    parts = ChatMessage(
        role="user",
        content=[{"type": "text", "text": "Hello "}, {"type": "image"}, {"type": "text", "text": "there"}],
    )
    assert parts.text == "Hello there"


def test_untyped_parts_count_as_text_everywhere() -> None:
    content = [{"text": "Where is "}, {"type": "text", "text": "my order?"}, {"type": "image"}]

    assert ChatMessage(role="user", content=content).text == "Where is my order?"
    assert message_text(ChatMessage(role="user", content=content)) == "Where is my order?"
